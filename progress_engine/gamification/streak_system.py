"""
Study Streak Tracking

One streak per user, evaluated at most once per calendar day (UTC):
- Same day: no change
- Next day: streak + 1, with bonus XP on 3, 7, 14, 21 and 30 days
- Missed days: bridged when the user holds one streak_freeze charge per missed day;
  if the charges are gone by the time they are consumed, the streak restarts at 1
- Otherwise (or first activity): streak restarts at 1

The transition is a compare-and-swap on (study_streak, last_activity_date),
so concurrent evaluations on the same day produce one transition.
"""

from typing import Optional
from datetime import date, datetime
import logging

from progress_engine.db.store import ProgressStore
from progress_engine.gamification.rules import (
    STREAK_BONUS_DAYS,
    XP_VALUES,
    get_streak_multiplier,
)
from progress_engine.gamification.xp_system import XPCalculator
from progress_engine.models import ActivityType, EffectType, StreakResult, XPActivity
from progress_engine.utils.datetime_helpers import days_between, ensure_utc

logger = logging.getLogger(__name__)


class StreakTracker:
    """Daily streak state machine"""

    def __init__(self, store: ProgressStore, xp_calculator: XPCalculator):
        self.store = store
        self.xp = xp_calculator

    async def update_streak(
        self,
        user_id: str,
        activity_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> StreakResult:
        """
        Update streak when activity occurs

        Args:
            user_id: User ID
            activity_date: Calendar date of the activity (defaults to today, UTC)
            now: Evaluation time, used for effect expiry and ledger timestamps

        Returns:
            StreakResult; changed is False when nothing moved (same day,
            an older date, or a concurrent evaluation got there first)
        """
        now = ensure_utc(now)
        today = activity_date or now.date()

        progress = await self.store.get_or_create_progress(user_id)
        old_streak = progress.study_streak
        last_date = progress.last_activity_date

        if last_date is not None and last_date >= today:
            # Already counted today; older dates never rewind the streak
            return StreakResult(new_streak=old_streak, old_streak=old_streak, changed=False)

        streak_protected = False
        gap_days = days_between(last_date, today) if last_date else None

        if gap_days == 1:
            new_streak = old_streak + 1
        elif gap_days and old_streak > 0 and await self._freeze_charges(user_id, now) >= gap_days - 1:
            new_streak = old_streak + 1
            streak_protected = True
        else:
            new_streak = 1

        swapped = await self.store.compare_and_set_streak(
            user_id,
            expected_streak=old_streak,
            expected_last_date=last_date,
            new_streak=new_streak,
            new_last_date=today,
        )
        if not swapped:
            current = await self.store.get_or_create_progress(user_id)
            logger.debug(f"Streak for user {user_id} already evaluated concurrently")
            return StreakResult(
                new_streak=current.study_streak,
                old_streak=current.study_streak,
                changed=False,
            )

        if streak_protected:
            missed_days = gap_days - 1
            if await self.store.consume_effect_charge(user_id, EffectType.STREAK_FREEZE, now, count=missed_days):
                logger.info(f"User {user_id} used {missed_days} streak freeze charge(s)")
            else:
                logger.warning(
                    f"Streak freeze for user {user_id} expired before it could be consumed, resetting streak"
                )
                reset = await self.store.compare_and_set_streak(
                    user_id,
                    expected_streak=new_streak,
                    expected_last_date=today,
                    new_streak=1,
                    new_last_date=today,
                )
                if reset:
                    new_streak = 1
                    streak_protected = False

        if new_streak == 1 and old_streak > 1:
            logger.info(f"User {user_id} streak broken. Was {old_streak}, gap was {gap_days} days")

        streak_bonus = 0
        milestone_reached = new_streak in STREAK_BONUS_DAYS
        if milestone_reached:
            bonus = await self.xp.award_xp(
                user_id,
                XPActivity(
                    type=ActivityType.STREAK_BONUS,
                    description=f"{new_streak}-day study streak",
                    base_xp=XP_VALUES[ActivityType.STREAK_BONUS],
                    multiplier=get_streak_multiplier(new_streak),
                ),
                credit_key=f"streak_bonus:{today.isoformat()}",
                now=now,
            )
            streak_bonus = bonus.xp_gained if bonus else 0

        logger.info(f"Updated streak for user {user_id}: {old_streak} → {new_streak} days")

        return StreakResult(
            new_streak=new_streak,
            old_streak=old_streak,
            streak_bonus=streak_bonus,
            streak_protected=streak_protected,
            milestone_reached=milestone_reached,
        )

    async def _freeze_charges(self, user_id: str, now: datetime) -> int:
        effects = await self.store.list_active_effects(user_id, now)
        return sum(e.value for e in effects if e.effect_type == EffectType.STREAK_FREEZE)

    async def get_streak(self, user_id: str) -> int:
        progress = await self.store.get_or_create_progress(user_id)
        return progress.study_streak
