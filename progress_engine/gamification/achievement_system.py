"""
Achievement System

Evaluates the achievement catalog against a user's totals and ledger and
performs at-most-once unlocks.

Criteria:
- questions_solved: all-time total, or questions credited to the ledger in a window
- streak_reached / level_reached: current values
- xp_earned: all-time total, or ledger XP in a window
- login_days: distinct active days, all-time or rolling window
- special_event: only on the setup_complete trigger

Unlocking is insert-if-absent on (user_id, achievement_id). The XP reward is
credited first under the once-only key achievement:<id>, so a failed grant
leaves the achievement locked and the next evaluation retries both steps.
"""

from typing import Any, Dict, List, Optional
from datetime import date, datetime, timedelta
import logging

from progress_engine.db.store import ProgressStore
from progress_engine.gamification.catalog import RARITY_ORDER, AchievementCatalog
from progress_engine.gamification.xp_system import XPCalculator
from progress_engine.models import (
    AchievementCategory,
    AchievementDefinition,
    AchievementProgress,
    AchievementTrigger,
    ActivityType,
    CriteriaType,
    Timeframe,
    UnlockedAchievement,
    UserProgress,
    XPActivity,
)
from progress_engine.utils.datetime_helpers import day_bounds, ensure_utc

logger = logging.getLogger(__name__)

WINDOW_DAYS = {
    Timeframe.DAILY: 1,
    Timeframe.WEEKLY: 7,
    Timeframe.MONTHLY: 30,
}

SPECIAL_EVENT_TRIGGER = AchievementTrigger.SETUP_COMPLETE

# Guards the unlock loop; each pass must unlock something to continue
MAX_UNLOCK_PASSES = 10


class AchievementEvaluator:
    """Checks and unlocks catalog achievements"""

    def __init__(self, store: ProgressStore, xp_calculator: XPCalculator, catalog: AchievementCatalog):
        self.store = store
        self.xp = xp_calculator
        self.catalog = catalog

    async def sync_catalog(self) -> int:
        """Write every catalog definition to the store; returns the count"""
        for definition in self.catalog:
            await self.store.upsert_achievement_definition(definition)
        logger.info(f"Synced {len(self.catalog)} achievement definitions")
        return len(self.catalog)

    async def check_and_unlock(
        self,
        user_id: str,
        trigger: AchievementTrigger,
        now: Optional[datetime] = None,
    ) -> List[UnlockedAchievement]:
        """
        Check if user unlocked any achievements

        Achievement XP can itself satisfy further criteria (levels, XP totals),
        so evaluation repeats until a pass unlocks nothing.

        Args:
            user_id: User ID
            trigger: What caused the check
            now: Evaluation time (defaults to current UTC time)

        Returns:
            Newly unlocked achievements with the XP each granted
        """
        now = ensure_utc(now)
        newly_unlocked: List[UnlockedAchievement] = []

        for _ in range(MAX_UNLOCK_PASSES):
            progress = await self.store.get_or_create_progress(user_id)
            unlocked_ids = {u.achievement_id for u in await self.store.get_achievement_unlocks(user_id)}

            unlocked_this_pass = []
            for definition in self.catalog:
                if definition.id in unlocked_ids:
                    continue

                current = await self._measure(user_id, definition, progress, trigger, now.date())
                if current < definition.criteria.threshold:
                    continue

                unlocked = await self.unlock(user_id, definition, now=now)
                if unlocked:
                    unlocked_this_pass.append(unlocked)

            newly_unlocked.extend(unlocked_this_pass)
            if not unlocked_this_pass:
                break

        return newly_unlocked

    async def unlock(
        self,
        user_id: str,
        definition: AchievementDefinition,
        now: Optional[datetime] = None,
    ) -> Optional[UnlockedAchievement]:
        """
        Unlock one achievement and grant its XP

        Returns:
            The unlock, or None if the user already had it
        """
        now = ensure_utc(now)
        result = None
        if definition.xp_reward > 0:
            result = await self.xp.award_xp(
                user_id,
                XPActivity(
                    type=ActivityType.ACHIEVEMENT,
                    description=f"Achievement unlocked: {definition.name}",
                    base_xp=definition.xp_reward,
                ),
                credit_key=f"achievement:{definition.id}",
                now=now,
            )

        inserted = await self.store.insert_achievement_unlock(user_id, definition.id, now)
        if not inserted:
            # Already unlocked, possibly by a concurrent evaluation
            return None

        # result is None when an earlier attempt credited the XP and then failed to record the unlock
        xp_awarded = result.xp_gained if result else definition.xp_reward

        logger.info(
            f"User {user_id} unlocked achievement: {definition.id} "
            f"({definition.name}) +{xp_awarded} XP"
        )
        return UnlockedAchievement(achievement=definition, unlocked_at=now, xp_awarded=xp_awarded)

    async def _measure(
        self,
        user_id: str,
        definition: AchievementDefinition,
        progress: UserProgress,
        trigger: Optional[AchievementTrigger],
        today: date,
    ) -> int:
        """Current value of the stat a criterion compares against its threshold"""
        criteria = definition.criteria
        window = WINDOW_DAYS.get(criteria.timeframe)

        if criteria.type == CriteriaType.QUESTIONS_SOLVED:
            if window is None:
                return progress.questions_solved
            start, end = self._window_bounds(today, window)
            return await self.xp.sum_questions(user_id, start, end)

        elif criteria.type == CriteriaType.STREAK_REACHED:
            return progress.study_streak

        elif criteria.type == CriteriaType.LEVEL_REACHED:
            return progress.current_level

        elif criteria.type == CriteriaType.XP_EARNED:
            if window is None:
                return progress.total_xp
            start, end = self._window_bounds(today, window)
            return await self.xp.sum_xp(user_id, start, end)

        elif criteria.type == CriteriaType.LOGIN_DAYS:
            if window is None:
                return await self.xp.distinct_activity_days(user_id)
            return await self.xp.distinct_activity_days_in_window(user_id, today, window)

        elif criteria.type == CriteriaType.SPECIAL_EVENT:
            if trigger == SPECIAL_EVENT_TRIGGER and criteria.threshold == 1:
                return 1
            return 0

        return 0

    @staticmethod
    def _window_bounds(today: date, days: int):
        start, _ = day_bounds(today - timedelta(days=days - 1))
        _, end = day_bounds(today)
        return start, end

    async def _definition(self, achievement_id: str) -> Optional[AchievementDefinition]:
        return self.catalog.get(achievement_id) or await self.store.get_achievement_definition(achievement_id)

    async def get_user_achievements(self, user_id: str) -> List[UnlockedAchievement]:
        """
        Get user's unlocked achievements, most recent first

        Includes special badges, which live in the store rather than the catalog.
        """
        unlocked = []
        for unlock in await self.store.get_achievement_unlocks(user_id):
            definition = await self._definition(unlock.achievement_id)
            if definition is None:
                logger.warning(f"Unlock of unknown achievement {unlock.achievement_id} for user {user_id}")
                continue
            unlocked.append(
                UnlockedAchievement(
                    achievement=definition,
                    unlocked_at=unlock.unlocked_at,
                    xp_awarded=definition.xp_reward,
                )
            )
        return unlocked

    async def get_achievement_progress(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[AchievementProgress]:
        """Progress toward every catalog achievement, percentage capped at 100"""
        now = ensure_utc(now)
        progress = await self.store.get_or_create_progress(user_id)
        unlocks = {u.achievement_id: u for u in await self.store.get_achievement_unlocks(user_id)}

        results = []
        for definition in self.catalog:
            required = definition.criteria.threshold
            unlock = unlocks.get(definition.id)
            if unlock:
                current = required
            else:
                current = await self._measure(user_id, definition, progress, None, now.date())

            results.append(
                AchievementProgress(
                    achievement=definition,
                    is_unlocked=unlock is not None,
                    current=current,
                    required=required,
                    percentage=min(round(current / required * 100), 100),
                    unlocked_at=unlock.unlocked_at if unlock else None,
                )
            )
        return results

    async def get_achievement_stats(self, user_id: str) -> Dict[str, Any]:
        """
        Achievement statistics

        Returns:
            {
                'total_unlocked': int,
                'total_available': int,
                'completion_rate': int (percent),
                'by_rarity': {rarity: count},
                'by_category': {category: count},
                'total_xp_from_achievements': int,
                'recent_unlocks': list[UnlockedAchievement] (up to 5)
            }
        """
        unlocked = await self.get_user_achievements(user_id)
        catalog_unlocked = [u for u in unlocked if u.achievement.id in self.catalog]
        total = len(self.catalog)

        by_rarity = {rarity.value: 0 for rarity in RARITY_ORDER}
        by_category = {category.value: 0 for category in AchievementCategory}
        for item in unlocked:
            by_rarity[item.achievement.rarity.value] += 1
            by_category[item.achievement.category.value] += 1

        return {
            "total_unlocked": len(unlocked),
            "total_available": total,
            "completion_rate": round(len(catalog_unlocked) / total * 100) if total else 0,
            "by_rarity": by_rarity,
            "by_category": by_category,
            "total_xp_from_achievements": sum(u.xp_awarded for u in unlocked),
            "recent_unlocks": unlocked[:5],
        }
