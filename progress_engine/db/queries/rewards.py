"""Reward box, effect and credit queries"""
import json
import logging
from typing import Optional
from datetime import datetime
from progress_engine.db.connection import db
from progress_engine.models import BoxType, EffectType, ResolvedReward, RewardBox, UserEffect

logger = logging.getLogger(__name__)

BOX_COLUMNS = "id, user_id, box_type, earned_at, opened_at, is_opened, reward, dedupe_key"
EFFECT_COLUMNS = "user_id, effect_type, value, expires_at, is_active"


def _to_box(row: dict) -> RewardBox:
    reward = row["reward"]
    if isinstance(reward, str):
        reward = json.loads(reward)
    return RewardBox(**{**row, "id": str(row["id"]), "reward": reward})


# ==========================================
# Reward Boxes
# ==========================================

async def insert_reward_box(
    user_id: str,
    box_type: BoxType,
    earned_at: datetime,
    dedupe_key: Optional[str] = None,
) -> Optional[RewardBox]:
    """
    Issue an unopened box

    Returns:
        The new box, or None if dedupe_key was already issued to this user
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                INSERT INTO reward_boxes (user_id, box_type, earned_at, is_opened, dedupe_key)
                VALUES (%s, %s, %s, FALSE, %s)
                ON CONFLICT (user_id, dedupe_key) DO NOTHING
                RETURNING {BOX_COLUMNS}
                """,
                (user_id, box_type.value, earned_at, dedupe_key)
            )
            row = await cur.fetchone()
            await conn.commit()
            return _to_box(row) if row else None


async def get_reward_box(box_id: str) -> Optional[RewardBox]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"SELECT {BOX_COLUMNS} FROM reward_boxes WHERE id = %s",
                (box_id,)
            )
            row = await cur.fetchone()
            return _to_box(row) if row else None


async def mark_box_opened(
    user_id: str,
    box_id: str,
    reward: ResolvedReward,
    opened_at: datetime,
) -> Optional[RewardBox]:
    """
    Conditional open: is_opened FALSE -> TRUE

    Returns:
        The opened box if this call won the transition, None otherwise
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE reward_boxes
                SET is_opened = TRUE,
                    opened_at = %s,
                    reward = %s::jsonb
                WHERE id = %s AND user_id = %s AND is_opened = FALSE
                RETURNING {BOX_COLUMNS}
                """,
                (opened_at, json.dumps(reward.model_dump(mode="json")), box_id, user_id)
            )
            row = await cur.fetchone()
            await conn.commit()
            return _to_box(row) if row else None


async def list_reward_boxes(user_id: str, unopened_only: bool = False) -> list[RewardBox]:
    """Boxes ordered by earned_at DESC"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {BOX_COLUMNS}
                FROM reward_boxes
                WHERE user_id = %s AND (NOT %s OR is_opened = FALSE)
                ORDER BY earned_at DESC
                """,
                (user_id, unopened_only)
            )
            rows = await cur.fetchall()
            return [_to_box(row) for row in rows]


# ==========================================
# Temporary Effects
# ==========================================

async def upsert_effect(
    user_id: str,
    effect_type: EffectType,
    value: int,
    expires_at: datetime,
    now: datetime,
    stack: bool,
) -> UserEffect:
    """
    Grant an effect, extending a live one

    A live effect keeps the later expiry; with stack=True its value
    (remaining charges) is added to instead of replaced.
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                INSERT INTO user_effects (user_id, effect_type, value, expires_at, is_active)
                VALUES (%s, %s, %s, %s, TRUE)
                ON CONFLICT (user_id, effect_type) DO UPDATE
                SET value = CASE
                        WHEN %s AND user_effects.is_active AND user_effects.expires_at > %s
                        THEN user_effects.value + EXCLUDED.value
                        ELSE EXCLUDED.value
                    END,
                    expires_at = CASE
                        WHEN user_effects.is_active AND user_effects.expires_at > %s
                        THEN GREATEST(user_effects.expires_at, EXCLUDED.expires_at)
                        ELSE EXCLUDED.expires_at
                    END,
                    is_active = TRUE
                RETURNING {EFFECT_COLUMNS}
                """,
                (user_id, effect_type.value, value, expires_at, stack, now, now)
            )
            row = await cur.fetchone()
            await conn.commit()
            return UserEffect(**row)


async def list_active_effects(user_id: str, now: datetime) -> list[UserEffect]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {EFFECT_COLUMNS}
                FROM user_effects
                WHERE user_id = %s AND is_active AND value > 0 AND expires_at > %s
                ORDER BY effect_type
                """,
                (user_id, now)
            )
            rows = await cur.fetchall()
            return [UserEffect(**row) for row in rows]


async def consume_effect_charge(user_id: str, effect_type: EffectType, now: datetime, count: int = 1) -> bool:
    """
    Use `count` charges of a live effect, all or nothing

    Returns:
        True if the charges were consumed
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE user_effects
                SET value = value - %s,
                    is_active = value - %s > 0
                WHERE user_id = %s AND effect_type = %s
                  AND is_active AND value >= %s AND expires_at > %s
                RETURNING value
                """,
                (count, count, user_id, effect_type.value, count, now)
            )
            result = await cur.fetchone()
            await conn.commit()
            return result is not None


# ==========================================
# Credits
# ==========================================

async def add_credits(user_id: str, credit_type: str, amount: int) -> int:
    """
    Add to a credit counter

    Returns:
        New balance
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_credits (user_id, credit_type, amount)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id, credit_type) DO UPDATE
                SET amount = user_credits.amount + EXCLUDED.amount
                RETURNING amount
                """,
                (user_id, credit_type, amount)
            )
            row = await cur.fetchone()
            await conn.commit()
            return int(row["amount"])


async def get_credits(user_id: str, credit_type: str) -> int:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                "SELECT amount FROM user_credits WHERE user_id = %s AND credit_type = %s",
                (user_id, credit_type)
            )
            row = await cur.fetchone()
            return int(row["amount"]) if row else 0
