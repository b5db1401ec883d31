"""
ProgressService - Activity Orchestration

Turns user actions into engine calls in a fixed order:
streak → XP → achievements → daily goal → reward boxes.

Store failures propagate to the caller; every step is atomic or idempotent,
so the whole action is safe to retry.
"""

import logging
import random
from typing import List, Optional
from datetime import datetime

from progress_engine.config import STORE_BACKEND
from progress_engine.db.store import PostgresStore, ProgressStore
from progress_engine.exceptions import ValidationError
from progress_engine.gamification.rules import XP_VALUES
from progress_engine.gamification import (
    AchievementCatalog,
    AchievementEvaluator,
    GoalDefaults,
    GoalTracker,
    RewardBoxEngine,
    RewardCatalog,
    StreakTracker,
    XPCalculator,
    default_achievement_catalog,
    default_reward_catalog,
)
from progress_engine.models import (
    ActivityOutcome,
    ActivityType,
    AchievementTrigger,
    GoalCreditResult,
    GoalProgressDelta,
    RewardBox,
    UnlockedAchievement,
    UserProgress,
    XPActivity,
)
from progress_engine.utils.datetime_helpers import ensure_utc

logger = logging.getLogger(__name__)


def _question_description(count: int, subject: Optional[str]) -> str:
    if count == 1 and not subject:
        return "Question solved"
    noun = "question" if count == 1 else "questions"
    if subject:
        return f"Solved {count} {noun} in {subject}"
    return f"Solved {count} {noun}"


class ProgressService:
    """
    Service for recording study activity.

    Responsibilities:
    - Ordering the engine steps for each kind of user action
    - Issuing milestone and achievement reward boxes
    - Collecting everything that happened into an ActivityOutcome
    """

    def __init__(
        self,
        store: ProgressStore,
        xp: XPCalculator,
        streaks: StreakTracker,
        achievements: AchievementEvaluator,
        boxes: RewardBoxEngine,
        goals: GoalTracker,
    ):
        self.store = store
        self.xp = xp
        self.streaks = streaks
        self.achievements = achievements
        self.boxes = boxes
        self.goals = goals
        logger.debug("ProgressService initialized")

    async def record_question_solved(
        self,
        user_id: str,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
        count: int = 1,
        subject: Optional[str] = None,
    ) -> ActivityOutcome:
        """
        Process one solved question, or a batch of `count` questions.

        A batch is a single ledger entry worth the per-question XP times
        count, floored once, and moves questions_solved and the daily goal
        by count.

        Raises:
            ValidationError: count is less than 1

        Returns:
            ActivityOutcome with the streak change, question XP, unlocked
            achievements, daily goal state and any boxes issued
        """
        if count < 1:
            raise ValidationError("Question count must be at least 1", field="count", value=count, user_id=user_id)
        if description is None:
            description = _question_description(count, subject)

        now = ensure_utc(now)
        outcome = ActivityOutcome(user_id=user_id)
        before = await self.store.get_or_create_progress(user_id)

        outcome.streak = await self.streaks.update_streak(user_id, now=now)

        outcome.xp = await self.xp.award_xp(
            user_id,
            XPActivity(
                type=ActivityType.QUESTION_SOLVED,
                description=description,
                base_xp=XP_VALUES[ActivityType.QUESTION_SOLVED] * count,
            ),
            questions_increment=count,
            now=now,
        )

        outcome.achievements = await self.achievements.check_and_unlock(
            user_id, AchievementTrigger.QUESTION_SOLVED, now=now
        )

        outcome.goal_credit = await self.goals.apply_progress(
            user_id, now.date(), GoalProgressDelta(questions=count), now=now
        )
        outcome.daily_goal = outcome.goal_credit.goal

        outcome.boxes_awarded = await self._issue_boxes(
            user_id, before, outcome.achievements, now, goal_credit=outcome.goal_credit
        )
        outcome.total_xp_gained = self._xp_total(outcome)

        logger.info(
            f"Questions solved processed: user={user_id}, count={count}, xp={outcome.total_xp_gained}, "
            f"streak={outcome.streak.new_streak}, achievements={len(outcome.achievements)}, "
            f"boxes={len(outcome.boxes_awarded)}"
        )
        return outcome

    async def record_login(self, user_id: str, now: Optional[datetime] = None) -> ActivityOutcome:
        """
        Process a login: streak, first-login XP (once per day), daily and
        weekly boxes, login achievements.
        """
        now = ensure_utc(now)
        today = now.date()
        outcome = ActivityOutcome(user_id=user_id)
        before = await self.store.get_or_create_progress(user_id)

        outcome.streak = await self.streaks.update_streak(user_id, now=now)

        outcome.xp = await self.xp.award_xp(
            user_id,
            XPActivity(type=ActivityType.FIRST_LOGIN, description="First login of the day"),
            credit_key=f"first_login:{today.isoformat()}",
            now=now,
        )

        cadence_boxes = [
            await self.boxes.grant_daily_box(user_id, today, now=now),
            await self.boxes.grant_weekly_box(user_id, today, now=now),
        ]

        outcome.achievements = await self.achievements.check_and_unlock(
            user_id, AchievementTrigger.LOGIN, now=now
        )

        outcome.boxes_awarded = [box for box in cadence_boxes if box]
        outcome.boxes_awarded += await self._issue_boxes(user_id, before, outcome.achievements, now)
        outcome.total_xp_gained = self._xp_total(outcome)

        logger.info(
            f"Login processed: user={user_id}, xp={outcome.total_xp_gained}, "
            f"boxes={len(outcome.boxes_awarded)}"
        )
        return outcome

    async def record_study_session(
        self,
        user_id: str,
        minutes: int,
        subjects: int = 0,
        now: Optional[datetime] = None,
    ) -> ActivityOutcome:
        """Add study minutes and subjects to today's goal"""
        if minutes < 0:
            raise ValidationError("Minutes cannot be negative", field="minutes", value=minutes, user_id=user_id)
        if subjects < 0:
            raise ValidationError("Subjects cannot be negative", field="subjects", value=subjects, user_id=user_id)

        now = ensure_utc(now)
        outcome = ActivityOutcome(user_id=user_id)
        before = await self.store.get_or_create_progress(user_id)

        outcome.goal_credit = await self.goals.apply_progress(
            user_id, now.date(), GoalProgressDelta(duration=minutes, subjects=subjects), now=now
        )
        outcome.daily_goal = outcome.goal_credit.goal

        outcome.boxes_awarded = await self._issue_boxes(user_id, before, [], now, goal_credit=outcome.goal_credit)
        outcome.total_xp_gained = self._xp_total(outcome)
        return outcome

    async def complete_setup(self, user_id: str, now: Optional[datetime] = None) -> ActivityOutcome:
        """Account setup finished: unlocks special-event achievements"""
        now = ensure_utc(now)
        outcome = ActivityOutcome(user_id=user_id)
        before = await self.store.get_or_create_progress(user_id)

        outcome.achievements = await self.achievements.check_and_unlock(
            user_id, AchievementTrigger.SETUP_COMPLETE, now=now
        )
        outcome.boxes_awarded = await self._issue_boxes(user_id, before, outcome.achievements, now)
        outcome.total_xp_gained = self._xp_total(outcome)

        logger.info(f"Setup completed: user={user_id}, achievements={len(outcome.achievements)}")
        return outcome

    async def _issue_boxes(
        self,
        user_id: str,
        before: UserProgress,
        achievements: List[UnlockedAchievement],
        now: datetime,
        goal_credit: Optional[GoalCreditResult] = None,
    ) -> List[RewardBox]:
        """
        Milestone boxes for crossed thresholds, one box per unlocked achievement

        Milestones crossed by daily-goal XP were already issued at credit
        time and are taken from goal_credit.
        """
        after = await self.store.get_or_create_progress(user_id)
        boxes = list(goal_credit.milestone_boxes) if goal_credit else []
        boxes += await self.boxes.check_milestones(user_id, before, after, now=now)
        for unlocked in achievements:
            box = await self.boxes.grant_achievement_box(user_id, unlocked.achievement.id, now=now)
            if box:
                boxes.append(box)
        return boxes

    @staticmethod
    def _xp_total(outcome: ActivityOutcome) -> int:
        total = outcome.xp.xp_gained if outcome.xp else 0
        if outcome.streak:
            total += outcome.streak.streak_bonus
        total += sum(a.xp_awarded for a in outcome.achievements)
        if outcome.goal_credit and outcome.goal_credit.xp:
            total += outcome.goal_credit.xp.xp_gained
        return total


def build_progress_service(
    store: Optional[ProgressStore] = None,
    rng: Optional[random.Random] = None,
    achievement_catalog: Optional[AchievementCatalog] = None,
    reward_catalog: Optional[RewardCatalog] = None,
    goal_defaults: Optional[GoalDefaults] = None,
) -> ProgressService:
    """
    Wire a ProgressService

    Without an explicit store the backend follows STORE_BACKEND. The
    postgres backend expects db.init_pool() to have been awaited.
    """
    if store is None:
        if STORE_BACKEND == "memory":
            from progress_engine.db.memory_store import MemoryStore
            store = MemoryStore()
        else:
            store = PostgresStore()

    xp = XPCalculator(store)
    streaks = StreakTracker(store, xp)
    achievements = AchievementEvaluator(store, xp, achievement_catalog or default_achievement_catalog())
    boxes = RewardBoxEngine(store, xp, achievements, reward_catalog or default_reward_catalog(), rng=rng)
    goals = GoalTracker(store, xp, goal_defaults, boxes=boxes)
    return ProgressService(store, xp, streaks, achievements, boxes, goals)
