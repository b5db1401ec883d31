"""Daily goal and custom goal queries"""
import logging
from typing import Optional
from datetime import date, datetime
from progress_engine.db.connection import db
from progress_engine.models import DailyGoal, GoalProgressDelta, UserGoal

logger = logging.getLogger(__name__)

DAILY_GOAL_COLUMNS = (
    "user_id, goal_date, target_questions, target_duration, target_subjects, "
    "achieved_questions, achieved_duration, achieved_subjects, "
    "manual_approval_required, is_manually_approved, approved_at, approval_note"
)
USER_GOAL_COLUMNS = (
    "id, user_id, goal_date, title, target_value, current_value, unit, "
    "is_completed, is_active, manual_approval_required, is_manually_approved, approved_at"
)


def _to_user_goal(row: dict) -> UserGoal:
    return UserGoal(**{**row, "id": str(row["id"])})


# ==========================================
# Daily Goals
# ==========================================

async def insert_daily_goal_if_absent(goal: DailyGoal) -> bool:
    """
    Create the day's goal unless one exists

    Returns:
        True if the row was created
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO daily_goals (
                    user_id, goal_date, target_questions, target_duration, target_subjects,
                    manual_approval_required
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id, goal_date) DO NOTHING
                RETURNING user_id
                """,
                (
                    goal.user_id,
                    goal.goal_date,
                    goal.target_questions,
                    goal.target_duration,
                    goal.target_subjects,
                    goal.manual_approval_required,
                )
            )
            result = await cur.fetchone()
            await conn.commit()
            return result is not None


async def get_daily_goal(user_id: str, goal_date: date) -> Optional[DailyGoal]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {DAILY_GOAL_COLUMNS}
                FROM daily_goals
                WHERE user_id = %s AND goal_date = %s
                """,
                (user_id, goal_date)
            )
            row = await cur.fetchone()
            return DailyGoal(**row) if row else None


async def increment_daily_goal(
    user_id: str,
    goal_date: date,
    delta: GoalProgressDelta,
) -> Optional[DailyGoal]:
    """
    Add progress atomically, clamping each counter to [0, target]

    Returns:
        Updated goal, or None if no goal exists for the date
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE daily_goals
                SET achieved_questions = LEAST(target_questions, GREATEST(0, achieved_questions + %s)),
                    achieved_duration = LEAST(target_duration, GREATEST(0, achieved_duration + %s)),
                    achieved_subjects = LEAST(target_subjects, GREATEST(0, achieved_subjects + %s)),
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s AND goal_date = %s
                RETURNING {DAILY_GOAL_COLUMNS}
                """,
                (delta.questions, delta.duration, delta.subjects, user_id, goal_date)
            )
            row = await cur.fetchone()
            await conn.commit()
            return DailyGoal(**row) if row else None


async def update_daily_goal_targets(
    user_id: str,
    goal_date: date,
    target_questions: int,
    target_duration: int,
    target_subjects: int,
) -> Optional[DailyGoal]:
    """Replace targets; achieved values are re-clamped to the new targets"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE daily_goals
                SET target_questions = %s,
                    target_duration = %s,
                    target_subjects = %s,
                    achieved_questions = LEAST(achieved_questions, %s),
                    achieved_duration = LEAST(achieved_duration, %s),
                    achieved_subjects = LEAST(achieved_subjects, %s),
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s AND goal_date = %s
                RETURNING {DAILY_GOAL_COLUMNS}
                """,
                (
                    target_questions, target_duration, target_subjects,
                    target_questions, target_duration, target_subjects,
                    user_id, goal_date,
                )
            )
            row = await cur.fetchone()
            await conn.commit()
            return DailyGoal(**row) if row else None


async def set_daily_goal_approval_required(
    user_id: str,
    goal_date: date,
    required: bool,
) -> Optional[DailyGoal]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE daily_goals
                SET manual_approval_required = %s,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s AND goal_date = %s
                RETURNING {DAILY_GOAL_COLUMNS}
                """,
                (required, user_id, goal_date)
            )
            row = await cur.fetchone()
            await conn.commit()
            return DailyGoal(**row) if row else None


async def approve_daily_goal(
    user_id: str,
    goal_date: date,
    approved_at: datetime,
    note: Optional[str] = None,
) -> bool:
    """
    Mark a goal approved if it is not already

    Returns:
        True if this call performed the approval
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE daily_goals
                SET is_manually_approved = TRUE,
                    approved_at = %s,
                    approval_note = %s,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s AND goal_date = %s AND is_manually_approved = FALSE
                RETURNING user_id
                """,
                (approved_at, note, user_id, goal_date)
            )
            result = await cur.fetchone()
            await conn.commit()
            return result is not None


async def revoke_daily_goal_approval(user_id: str, goal_date: date) -> Optional[DailyGoal]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE daily_goals
                SET is_manually_approved = FALSE,
                    approved_at = NULL,
                    approval_note = NULL,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s AND goal_date = %s
                RETURNING {DAILY_GOAL_COLUMNS}
                """,
                (user_id, goal_date)
            )
            row = await cur.fetchone()
            await conn.commit()
            return DailyGoal(**row) if row else None


async def list_daily_goals(user_id: str, start: date, end: date) -> list[DailyGoal]:
    """Goals with start <= goal_date <= end, newest first"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {DAILY_GOAL_COLUMNS}
                FROM daily_goals
                WHERE user_id = %s AND goal_date BETWEEN %s AND %s
                ORDER BY goal_date DESC
                """,
                (user_id, start, end)
            )
            rows = await cur.fetchall()
            return [DailyGoal(**row) for row in rows]


# ==========================================
# Custom Goals
# ==========================================

async def insert_user_goal(
    user_id: str,
    goal_date: date,
    title: str,
    target_value: int,
    unit: str,
    manual_approval_required: bool,
) -> UserGoal:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                INSERT INTO user_goals (user_id, goal_date, title, target_value, unit, manual_approval_required)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {USER_GOAL_COLUMNS}
                """,
                (user_id, goal_date, title, target_value, unit, manual_approval_required)
            )
            row = await cur.fetchone()
            await conn.commit()
            logger.info(f"Created custom goal {row['id']} for user {user_id}")
            return _to_user_goal(row)


async def get_user_goal(user_id: str, goal_id: str) -> Optional[UserGoal]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {USER_GOAL_COLUMNS}
                FROM user_goals
                WHERE id = %s AND user_id = %s
                """,
                (goal_id, user_id)
            )
            row = await cur.fetchone()
            return _to_user_goal(row) if row else None


async def increment_user_goal(user_id: str, goal_id: str, delta: int) -> Optional[UserGoal]:
    """Clamp current_value to [0, target_value] and refresh is_completed"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE user_goals
                SET current_value = LEAST(target_value, GREATEST(0, current_value + %s)),
                    is_completed = LEAST(target_value, GREATEST(0, current_value + %s)) >= target_value
                WHERE id = %s AND user_id = %s AND is_active
                RETURNING {USER_GOAL_COLUMNS}
                """,
                (delta, delta, goal_id, user_id)
            )
            row = await cur.fetchone()
            await conn.commit()
            return _to_user_goal(row) if row else None


async def set_user_goal_approval(
    user_id: str,
    goal_id: str,
    approved: bool,
    approved_at: Optional[datetime],
) -> Optional[UserGoal]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE user_goals
                SET is_manually_approved = %s,
                    approved_at = %s
                WHERE id = %s AND user_id = %s AND is_active
                RETURNING {USER_GOAL_COLUMNS}
                """,
                (approved, approved_at, goal_id, user_id)
            )
            row = await cur.fetchone()
            await conn.commit()
            return _to_user_goal(row) if row else None


async def deactivate_user_goal(user_id: str, goal_id: str) -> bool:
    """
    Soft delete a custom goal

    Returns:
        True if an active goal was deactivated
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE user_goals
                SET is_active = FALSE
                WHERE id = %s AND user_id = %s AND is_active
                RETURNING id
                """,
                (goal_id, user_id)
            )
            result = await cur.fetchone()
            await conn.commit()
            return result is not None


async def list_user_goals(user_id: str, goal_date: Optional[date] = None) -> list[UserGoal]:
    """Active custom goals, optionally for a single date"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {USER_GOAL_COLUMNS}
                FROM user_goals
                WHERE user_id = %s AND is_active
                  AND (%s::date IS NULL OR goal_date = %s)
                ORDER BY goal_date DESC, title
                """,
                (user_id, goal_date, goal_date)
            )
            rows = await cur.fetchall()
            return [_to_user_goal(row) for row in rows]
