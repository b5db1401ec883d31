"""
XP and Leveling System

Turns activities into XP, keeps the ledger and the per-user totals in step,
and answers level/progress questions.

XP Award Rules:
- Base XP comes from the activity, falling back to XP_VALUES
- question_solved is boosted by the streak multiplier and by an active
  double_xp effect
- Totals change only through award_xp; the ledger append and the increment
  are one atomic store step
"""

import math
from typing import Dict, List, Optional
from datetime import date, datetime, timedelta
import logging

from progress_engine.db.store import ProgressStore
from progress_engine.gamification.rules import (
    XP_VALUES,
    get_streak_multiplier,
    level_progress,
)
from progress_engine.models import (
    ActivityType,
    EffectType,
    LedgerEntry,
    UserProgress,
    XPActivity,
    XPResult,
)
from progress_engine.utils.datetime_helpers import day_bounds, ensure_utc

logger = logging.getLogger(__name__)

DOUBLE_XP_FACTOR = 2


class XPCalculator:
    """Single writer of total_xp and current_level"""

    def __init__(self, store: ProgressStore):
        self.store = store

    async def calculate_xp(self, user_id: str, activity: XPActivity, now: datetime) -> int:
        """
        XP an activity is worth right now (floored)

        Reads the current streak and active effects, never mutates.
        """
        base_xp = activity.base_xp if activity.base_xp is not None else XP_VALUES[activity.type]
        amount = float(base_xp)

        if activity.multiplier is not None:
            amount *= activity.multiplier

        if activity.type == ActivityType.QUESTION_SOLVED:
            progress = await self.store.get_or_create_progress(user_id)
            amount *= get_streak_multiplier(progress.study_streak)

            effects = await self.store.list_active_effects(user_id, now)
            if any(e.effect_type == EffectType.DOUBLE_XP for e in effects):
                amount *= DOUBLE_XP_FACTOR

        return int(math.floor(amount))

    async def award_xp(
        self,
        user_id: str,
        activity: XPActivity,
        questions_increment: int = 0,
        credit_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[XPResult]:
        """
        Award XP to user and recompute level

        Args:
            user_id: User ID
            activity: What was done and how much it is worth
            questions_increment: Added to questions_solved in the same step
            credit_key: Once-only key; a second award with the same key is refused
            now: Ledger timestamp (defaults to current UTC time)

        Returns:
            XPResult, or None when credit_key was already granted
        """
        now = ensure_utc(now)
        xp_gained = await self.calculate_xp(user_id, activity, now)

        after = await self.store.apply_xp(
            user_id,
            xp_gained,
            activity.type,
            activity.description,
            questions_increment=questions_increment,
            credit_key=credit_key,
            created_at=now,
        )
        if after is None:
            return None

        # Old values are derived from the row returned by the atomic
        # increment, so they stay correct under concurrent awards.
        old_total_xp = after.total_xp - xp_gained
        old_level = level_progress(old_total_xp)["current_level"]
        result = XPResult(
            xp_gained=xp_gained,
            old_total_xp=old_total_xp,
            new_total_xp=after.total_xp,
            old_level=old_level,
            new_level=after.current_level,
            leveled_up=after.current_level > old_level,
        )

        logger.info(
            f"Awarded {xp_gained} XP to user {user_id} for {activity.type.value} "
            f"(total: {after.total_xp}, level: {after.current_level})"
        )
        if result.leveled_up:
            logger.info(f"User {user_id} leveled up: {old_level} -> {after.current_level}")

        return result

    async def get_user_progress(self, user_id: str) -> UserProgress:
        """Current totals (created with zero defaults on first access)"""
        return await self.store.get_or_create_progress(user_id)

    async def get_recent_activities(self, user_id: str, limit: int = 10) -> List[LedgerEntry]:
        return await self.store.get_ledger_entries(user_id, limit=limit)

    async def get_level_info(self, user_id: str) -> Dict[str, int]:
        """
        Level breakdown for display

        Returns:
            {
                'total_xp': int,
                'current_level': int,
                'xp_in_current_level': int,
                'xp_to_next_level': int,
                'total_xp_for_next_level': int
            }
        """
        progress = await self.store.get_or_create_progress(user_id)
        return {"total_xp": progress.total_xp, **level_progress(progress.total_xp)}

    # ==========================================
    # Ledger aggregations
    # ==========================================

    async def count_activities(
        self,
        user_id: str,
        activity_type: ActivityType,
        start: datetime,
        end: datetime,
    ) -> int:
        return await self.store.count_ledger_entries(user_id, activity_type, start, end)

    async def count_activities_on(self, user_id: str, activity_type: ActivityType, day: date) -> int:
        start, end = day_bounds(day)
        return await self.store.count_ledger_entries(user_id, activity_type, start, end)

    async def sum_xp(self, user_id: str, start: datetime, end: datetime) -> int:
        return await self.store.sum_ledger_xp(user_id, start, end)

    async def sum_xp_on(self, user_id: str, day: date) -> int:
        start, end = day_bounds(day)
        return await self.store.sum_ledger_xp(user_id, start, end)

    async def sum_questions(self, user_id: str, start: datetime, end: datetime) -> int:
        """Questions solved in [start, end); a batch entry counts every question"""
        return await self.store.sum_ledger_questions(user_id, start, end)

    async def distinct_activity_days(self, user_id: str, since: Optional[datetime] = None) -> int:
        """Days with ledger activity; since=None counts all time"""
        return await self.store.count_active_days(user_id, since)

    async def distinct_activity_days_in_window(self, user_id: str, today: date, days: int) -> int:
        """Active days in the rolling window of `days` days ending today"""
        start, _ = day_bounds(today - timedelta(days=days - 1))
        return await self.store.count_active_days(user_id, start)
