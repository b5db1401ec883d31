"""
Goal Tracking and Manual Approval

Daily goal: one aggregate record per user per date (questions, minutes,
subjects). Achieved values are clamped to [0, target]. Completion is derived;
credit (daily-goal XP, once per date) follows completion automatically unless
manual approval is required, in which case approve() grants it.
When a box engine is attached, milestones crossed by the goal XP are issued
at the moment of credit, so approvals outside an activity are covered too.

Custom goals: user-defined, clamp-and-complete, soft deleted, never grant XP.
"""

from typing import List, NamedTuple, Optional
from datetime import date, datetime
import logging

from progress_engine.config import (
    DEFAULT_TARGET_DURATION,
    DEFAULT_TARGET_QUESTIONS,
    DEFAULT_TARGET_SUBJECTS,
)
from progress_engine.db.store import ProgressStore
from progress_engine.exceptions import RecordNotFoundError, ValidationError
from progress_engine.gamification.reward_boxes import RewardBoxEngine
from progress_engine.gamification.xp_system import XPCalculator
from progress_engine.models import (
    ActivityType,
    DailyGoal,
    GoalCreditResult,
    GoalProgressDelta,
    GoalSummary,
    UserGoal,
    XPActivity,
)
from progress_engine.utils.datetime_helpers import ensure_utc

logger = logging.getLogger(__name__)


class GoalDefaults(NamedTuple):
    """Targets for a newly created daily goal"""
    questions: int = DEFAULT_TARGET_QUESTIONS
    duration: int = DEFAULT_TARGET_DURATION
    subjects: int = DEFAULT_TARGET_SUBJECTS


def daily_goal_credit_key(goal_date: date) -> str:
    return f"daily_goal:{goal_date.isoformat()}"


class GoalTracker:
    """Daily and custom goals with optional manual approval"""

    def __init__(
        self,
        store: ProgressStore,
        xp_calculator: XPCalculator,
        defaults: Optional[GoalDefaults] = None,
        boxes: Optional[RewardBoxEngine] = None,
    ):
        self.store = store
        self.xp = xp_calculator
        self.defaults = defaults or GoalDefaults()
        self.boxes = boxes

    # ==========================================
    # Daily goal
    # ==========================================

    async def get_or_create_daily_goal(self, user_id: str, goal_date: date) -> DailyGoal:
        """Existing record for the date, or a new one with default targets"""
        created = await self.store.insert_daily_goal_if_absent(
            DailyGoal(
                user_id=user_id,
                goal_date=goal_date,
                target_questions=self.defaults.questions,
                target_duration=self.defaults.duration,
                target_subjects=self.defaults.subjects,
            )
        )
        if created:
            logger.debug(f"Created daily goal for user {user_id} on {goal_date}")
        return await self.store.get_daily_goal(user_id, goal_date)

    async def _require_daily_goal(self, user_id: str, goal_date: date, operation: str) -> DailyGoal:
        goal = await self.store.get_daily_goal(user_id, goal_date)
        if goal is None:
            raise RecordNotFoundError(
                message=f"No daily goal for {goal_date}",
                record_type="DailyGoal",
                record_id=goal_date.isoformat(),
                user_id=user_id,
                operation=operation,
            )
        return goal

    async def apply_progress(
        self,
        user_id: str,
        goal_date: date,
        delta: GoalProgressDelta,
        now: Optional[datetime] = None,
    ) -> GoalCreditResult:
        """
        Add progress and grant credit if that completed the goal

        Overshoot is capped at the target, negative deltas stop at zero.
        """
        await self.get_or_create_daily_goal(user_id, goal_date)
        goal = await self.store.increment_daily_goal(user_id, goal_date, delta)
        return await self._credit_if_eligible(user_id, goal, now)

    async def update_progress(
        self,
        user_id: str,
        goal_date: date,
        delta: GoalProgressDelta,
        now: Optional[datetime] = None,
    ) -> DailyGoal:
        result = await self.apply_progress(user_id, goal_date, delta, now=now)
        return result.goal

    async def set_targets(
        self,
        user_id: str,
        goal_date: date,
        target_questions: int,
        target_duration: int,
        target_subjects: int,
        now: Optional[datetime] = None,
    ) -> DailyGoal:
        """Replace the day's targets; progress above a lowered target is capped"""
        for field, value in (
            ("target_questions", target_questions),
            ("target_duration", target_duration),
            ("target_subjects", target_subjects),
        ):
            if value < 1:
                raise ValidationError(
                    "Target must be at least 1", field=field, value=value, user_id=user_id, operation="set_targets"
                )

        await self.get_or_create_daily_goal(user_id, goal_date)
        goal = await self.store.update_daily_goal_targets(
            user_id, goal_date, target_questions, target_duration, target_subjects
        )
        result = await self._credit_if_eligible(user_id, goal, now)
        return result.goal

    async def set_manual_approval_required(
        self,
        user_id: str,
        goal_date: date,
        required: bool,
        now: Optional[datetime] = None,
    ) -> DailyGoal:
        await self.get_or_create_daily_goal(user_id, goal_date)
        goal = await self.store.set_daily_goal_approval_required(user_id, goal_date, required)
        result = await self._credit_if_eligible(user_id, goal, now)
        return result.goal

    async def approve(
        self,
        user_id: str,
        goal_date: date,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GoalCreditResult:
        """
        Approve a completed daily goal and grant its credit

        Re-approving is a no-op. After revoke() and a second approve() the
        XP is still granted only once per date.

        Raises:
            RecordNotFoundError: no goal for the date
            ValidationError: goal is not complete
        """
        now = ensure_utc(now)
        goal = await self._require_daily_goal(user_id, goal_date, "approve")
        if not goal.is_completed:
            raise ValidationError(
                f"Daily goal for {goal_date} is not complete ({goal.progress_percentage}%)",
                field="goal_date",
                value=goal_date.isoformat(),
                user_id=user_id,
                operation="approve",
            )

        approved = await self.store.approve_daily_goal(user_id, goal_date, now, note)
        goal = await self.store.get_daily_goal(user_id, goal_date)
        if not approved:
            logger.debug(f"Daily goal {goal_date} for user {user_id} already approved")
            return GoalCreditResult(goal=goal, credited=False)

        logger.info(f"User {user_id} approved daily goal for {goal_date}")
        return await self._grant_credit(user_id, goal, now)

    async def revoke(self, user_id: str, goal_date: date) -> DailyGoal:
        """Clear approval state; progress and granted XP stay"""
        await self._require_daily_goal(user_id, goal_date, "revoke")
        goal = await self.store.revoke_daily_goal_approval(user_id, goal_date)
        logger.info(f"User {user_id} revoked approval of daily goal for {goal_date}")
        return goal

    async def _credit_if_eligible(
        self,
        user_id: str,
        goal: DailyGoal,
        now: Optional[datetime],
    ) -> GoalCreditResult:
        if not goal.is_credit_eligible:
            return GoalCreditResult(goal=goal, credited=False)
        return await self._grant_credit(user_id, goal, ensure_utc(now))

    async def _grant_credit(self, user_id: str, goal: DailyGoal, now: datetime) -> GoalCreditResult:
        """Daily-goal XP; the credit key makes check-and-grant one atomic step"""
        goal_date = goal.goal_date
        before = await self.store.get_or_create_progress(user_id)
        xp = await self.xp.award_xp(
            user_id,
            XPActivity(type=ActivityType.DAILY_GOAL, description=f"Daily goal completed ({goal_date.isoformat()})"),
            credit_key=daily_goal_credit_key(goal_date),
            now=now,
        )
        if xp is None:
            return GoalCreditResult(goal=goal, credited=False)

        logger.info(f"User {user_id} credited for daily goal {goal_date}: +{xp.xp_gained} XP")
        result = GoalCreditResult(goal=goal, credited=True, xp=xp)
        if self.boxes is not None:
            after = await self.store.get_or_create_progress(user_id)
            result.milestone_boxes = await self.boxes.check_milestones(user_id, before, after, now=now)
        return result

    async def get_goal_history(self, user_id: str, start: date, end: date) -> List[DailyGoal]:
        """Daily goals between start and end inclusive, newest first"""
        if start > end:
            raise ValidationError("start must not be after end", field="start", value=start.isoformat())
        return await self.store.list_daily_goals(user_id, start, end)

    # ==========================================
    # Custom goals
    # ==========================================

    async def add_custom_goal(
        self,
        user_id: str,
        title: str,
        target_value: int,
        goal_date: date,
        unit: str = "count",
        manual_approval_required: bool = True,
    ) -> UserGoal:
        if not title or not title.strip():
            raise ValidationError("Title cannot be empty", field="title", value=title, user_id=user_id)
        if target_value < 1:
            raise ValidationError(
                "Target must be at least 1", field="target_value", value=target_value, user_id=user_id
            )
        return await self.store.insert_user_goal(
            user_id, goal_date, title.strip(), target_value, unit, manual_approval_required
        )

    async def _require_custom_goal(self, user_id: str, goal_id: str, operation: str) -> UserGoal:
        goal = await self.store.get_user_goal(user_id, goal_id)
        if goal is None or not goal.is_active:
            raise RecordNotFoundError(
                message=f"Custom goal {goal_id} not found",
                record_type="UserGoal",
                record_id=goal_id,
                user_id=user_id,
                operation=operation,
            )
        return goal

    async def update_custom_goal(self, user_id: str, goal_id: str, delta: int) -> UserGoal:
        """Add to current_value, clamped to [0, target_value]"""
        await self._require_custom_goal(user_id, goal_id, "update_custom_goal")
        goal = await self.store.increment_user_goal(user_id, goal_id, delta)
        if goal is None:
            # Deleted between the check and the update
            raise RecordNotFoundError(
                message=f"Custom goal {goal_id} not found",
                record_type="UserGoal",
                record_id=goal_id,
                user_id=user_id,
                operation="update_custom_goal",
            )
        return goal

    async def approve_custom_goal(self, user_id: str, goal_id: str, now: Optional[datetime] = None) -> UserGoal:
        goal = await self._require_custom_goal(user_id, goal_id, "approve_custom_goal")
        if not goal.is_completed:
            raise ValidationError(
                f"Custom goal '{goal.title}' is not complete",
                field="goal_id",
                value=goal_id,
                user_id=user_id,
                operation="approve_custom_goal",
            )
        if goal.is_manually_approved:
            return goal
        return await self.store.set_user_goal_approval(user_id, goal_id, True, ensure_utc(now))

    async def revoke_custom_goal(self, user_id: str, goal_id: str) -> UserGoal:
        await self._require_custom_goal(user_id, goal_id, "revoke_custom_goal")
        return await self.store.set_user_goal_approval(user_id, goal_id, False, None)

    async def delete_custom_goal(self, user_id: str, goal_id: str) -> None:
        """Soft delete (is_active = False)"""
        await self._require_custom_goal(user_id, goal_id, "delete_custom_goal")
        await self.store.deactivate_user_goal(user_id, goal_id)
        logger.info(f"User {user_id} deleted custom goal {goal_id}")

    async def list_custom_goals(self, user_id: str, goal_date: Optional[date] = None) -> List[UserGoal]:
        return await self.store.list_user_goals(user_id, goal_date)

    # ==========================================
    # Summary
    # ==========================================

    @staticmethod
    def summarize(daily_goal: Optional[DailyGoal], custom_goals: Optional[List[UserGoal]] = None) -> GoalSummary:
        """
        Completed/total counts and average progress across the day's goals

        The daily goal contributes one entry per dimension (questions,
        minutes, subjects); each active custom goal contributes one.
        """
        parts = []
        if daily_goal is not None:
            parts += [
                (daily_goal.achieved_questions, daily_goal.target_questions),
                (daily_goal.achieved_duration, daily_goal.target_duration),
                (daily_goal.achieved_subjects, daily_goal.target_subjects),
            ]
        parts += [(g.current_value, g.target_value) for g in custom_goals or [] if g.is_active]

        total = len(parts)
        completed = sum(1 for current, target in parts if current >= target)
        main_progress = (
            sum(min(current / target * 100, 100) for current, target in parts) / total if total else 0.0
        )
        return GoalSummary(
            completed_goals=completed,
            total_goals=total,
            completion_rate=round(completed / total * 100) if total else 0,
            main_progress=main_progress,
            questions_today=daily_goal.achieved_questions if daily_goal else 0,
            question_target=daily_goal.target_questions if daily_goal else 0,
        )

    async def get_summary(self, user_id: str, goal_date: date) -> GoalSummary:
        daily_goal = await self.get_or_create_daily_goal(user_id, goal_date)
        custom_goals = await self.list_custom_goals(user_id, goal_date)
        return self.summarize(daily_goal, custom_goals)
