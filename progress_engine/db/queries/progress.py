"""Progress and XP ledger queries"""
import logging
from typing import Optional
from datetime import date, datetime
from progress_engine.db.connection import db
from progress_engine.models import ActivityType, LedgerEntry, UserProgress

logger = logging.getLogger(__name__)

PROGRESS_COLUMNS = (
    "user_id, total_xp, current_level, questions_solved, study_streak, last_activity_date, updated_at"
)
LEDGER_COLUMNS = "id, user_id, xp_gained, activity_type, description, credit_key, question_count, created_at"


def _to_progress(row: dict) -> UserProgress:
    return UserProgress(**row)


def _to_ledger_entry(row: dict) -> LedgerEntry:
    return LedgerEntry(**{**row, "id": str(row["id"])})


# ==========================================
# User Progress
# ==========================================

async def get_or_create_progress(user_id: str) -> UserProgress:
    """
    Get user progress (creates with zero defaults if it doesn't exist)
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_progress (user_id)
                VALUES (%s)
                ON CONFLICT (user_id) DO NOTHING
                """,
                (user_id,)
            )
            await cur.execute(
                f"SELECT {PROGRESS_COLUMNS} FROM user_progress WHERE user_id = %s",
                (user_id,)
            )
            row = await cur.fetchone()
            await conn.commit()
            return _to_progress(row)


async def apply_xp(
    user_id: str,
    xp_gained: int,
    activity_type: ActivityType,
    description: str,
    questions_increment: int,
    credit_key: Optional[str],
    created_at: datetime,
) -> Optional[UserProgress]:
    """
    Append a ledger entry and increment totals in one transaction

    The level is recomputed from the incremented total in the same UPDATE,
    so concurrent awards never lose an update.

    Returns:
        Progress after the increment, or None if credit_key was already used
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO xp_ledger
                    (user_id, xp_gained, activity_type, description, credit_key, question_count, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id, credit_key) DO NOTHING
                RETURNING id
                """,
                (user_id, xp_gained, activity_type.value, description, credit_key, questions_increment, created_at)
            )
            if await cur.fetchone() is None:
                await conn.rollback()
                logger.debug(f"Credit {credit_key} already granted to user {user_id}")
                return None

            await cur.execute(
                """
                INSERT INTO user_progress (user_id)
                VALUES (%s)
                ON CONFLICT (user_id) DO NOTHING
                """,
                (user_id,)
            )
            await cur.execute(
                f"""
                UPDATE user_progress
                SET total_xp = total_xp + %s,
                    current_level = (total_xp + %s) / 100 + 1,
                    questions_solved = questions_solved + %s,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s
                RETURNING {PROGRESS_COLUMNS}
                """,
                (xp_gained, xp_gained, questions_increment, user_id)
            )
            row = await cur.fetchone()
            await conn.commit()
            return _to_progress(row)


async def compare_and_set_streak(
    user_id: str,
    expected_streak: int,
    expected_last_date: Optional[date],
    new_streak: int,
    new_last_date: date,
) -> bool:
    """
    Move the streak state only if nobody else moved it first

    Returns:
        True if this call performed the transition
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE user_progress
                SET study_streak = %s,
                    last_activity_date = %s,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s
                  AND study_streak = %s
                  AND last_activity_date IS NOT DISTINCT FROM %s
                RETURNING user_id
                """,
                (new_streak, new_last_date, user_id, expected_streak, expected_last_date)
            )
            result = await cur.fetchone()
            await conn.commit()
            return result is not None


# ==========================================
# XP Ledger
# ==========================================

async def append_ledger_entry(
    user_id: str,
    xp_gained: int,
    activity_type: ActivityType,
    description: str,
    created_at: datetime,
) -> LedgerEntry:
    """Append an audit entry without touching totals (only used with xp_gained = 0)"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                INSERT INTO xp_ledger (user_id, xp_gained, activity_type, description, created_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {LEDGER_COLUMNS}
                """,
                (user_id, xp_gained, activity_type.value, description, created_at)
            )
            row = await cur.fetchone()
            await conn.commit()
            return _to_ledger_entry(row)


async def get_ledger_entries(user_id: str, limit: int = 50) -> list[LedgerEntry]:
    """
    Get recent ledger entries for user

    Returns:
        Entries ordered by created_at DESC
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {LEDGER_COLUMNS}
                FROM xp_ledger
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, limit)
            )
            rows = await cur.fetchall()
            return [_to_ledger_entry(row) for row in rows]


async def count_ledger_entries(
    user_id: str,
    activity_type: ActivityType,
    start: datetime,
    end: datetime,
) -> int:
    """Count entries of one type in [start, end)"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT COUNT(*) AS count
                FROM xp_ledger
                WHERE user_id = %s AND activity_type = %s
                  AND created_at >= %s AND created_at < %s
                """,
                (user_id, activity_type.value, start, end)
            )
            row = await cur.fetchone()
            return int(row["count"]) if row else 0


async def sum_ledger_xp(user_id: str, start: datetime, end: datetime) -> int:
    """Total XP gained in [start, end)"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT COALESCE(SUM(xp_gained), 0) AS total
                FROM xp_ledger
                WHERE user_id = %s AND created_at >= %s AND created_at < %s
                """,
                (user_id, start, end)
            )
            row = await cur.fetchone()
            return int(row["total"]) if row else 0


async def count_active_days(user_id: str, since: Optional[datetime] = None) -> int:
    """Distinct UTC calendar days with at least one ledger entry"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT COUNT(DISTINCT (created_at AT TIME ZONE 'UTC')::date) AS days
                FROM xp_ledger
                WHERE user_id = %s AND (%s::timestamptz IS NULL OR created_at >= %s)
                """,
                (user_id, since, since)
            )
            row = await cur.fetchone()
            return int(row["days"]) if row else 0


async def sum_ledger_questions(user_id: str, start: datetime, end: datetime) -> int:
    """Questions credited in [start, end), counting every question of a batch"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT COALESCE(SUM(question_count), 0) AS total
                FROM xp_ledger
                WHERE user_id = %s AND created_at >= %s AND created_at < %s
                """,
                (user_id, start, end)
            )
            row = await cur.fetchone()
            return int(row["total"]) if row else 0
