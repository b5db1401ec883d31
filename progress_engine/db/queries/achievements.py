"""Achievement queries"""
import json
import logging
from typing import Optional
from datetime import datetime
from progress_engine.db.connection import db
from progress_engine.models import AchievementDefinition, AchievementUnlock

logger = logging.getLogger(__name__)

DEFINITION_COLUMNS = "id, name, description, icon, category, criteria, xp_reward, rarity"


def _to_definition(row: dict) -> AchievementDefinition:
    criteria = row["criteria"]
    if isinstance(criteria, str):
        criteria = json.loads(criteria)
    return AchievementDefinition(**{**row, "criteria": criteria})


async def upsert_achievement_definition(definition: AchievementDefinition) -> None:
    """Insert or refresh a catalog entry"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO achievements (id, name, description, icon, category, criteria, xp_reward, rarity)
                VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s)
                ON CONFLICT (id) DO UPDATE
                SET name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    icon = EXCLUDED.icon,
                    category = EXCLUDED.category,
                    criteria = EXCLUDED.criteria,
                    xp_reward = EXCLUDED.xp_reward,
                    rarity = EXCLUDED.rarity,
                    is_active = TRUE
                """,
                (
                    definition.id,
                    definition.name,
                    definition.description,
                    definition.icon,
                    definition.category.value,
                    json.dumps(definition.criteria.model_dump(mode="json")),
                    definition.xp_reward,
                    definition.rarity.value,
                )
            )
            await conn.commit()


async def get_achievement_definition(achievement_id: str) -> Optional[AchievementDefinition]:
    """
    Get achievement by id

    Returns:
        Achievement definition or None
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"SELECT {DEFINITION_COLUMNS} FROM achievements WHERE id = %s",
                (achievement_id,)
            )
            row = await cur.fetchone()
            return _to_definition(row) if row else None


async def insert_achievement_unlock(user_id: str, achievement_id: str, unlocked_at: datetime) -> bool:
    """
    Add achievement unlock for user

    Returns:
        True if newly unlocked, False if already unlocked
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_achievements (user_id, achievement_id, unlocked_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id, achievement_id) DO NOTHING
                RETURNING id
                """,
                (user_id, achievement_id, unlocked_at)
            )
            result = await cur.fetchone()
            await conn.commit()

            if result:
                logger.info(f"User {user_id} unlocked achievement {achievement_id}")
                return True
            return False


async def get_achievement_unlocks(user_id: str) -> list[AchievementUnlock]:
    """
    Get user's unlocked achievements

    Returns:
        Unlocks ordered by unlocked_at DESC
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT user_id, achievement_id, unlocked_at
                FROM user_achievements
                WHERE user_id = %s
                ORDER BY unlocked_at DESC
                """,
                (user_id,)
            )
            rows = await cur.fetchall()
            return [AchievementUnlock(**row) for row in rows]
