"""
Record store abstraction

Engines depend on ProgressStore, never on the SQL modules directly, so the
same logic runs against PostgreSQL in production and MemoryStore in tests.
Every mutating method is atomic with respect to concurrent callers.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import psycopg

from progress_engine.db import queries
from progress_engine.exceptions import wrap_store_exception
from progress_engine.models import (
    AchievementDefinition,
    AchievementUnlock,
    ActivityType,
    BoxType,
    DailyGoal,
    EffectType,
    GoalProgressDelta,
    LedgerEntry,
    ResolvedReward,
    RewardBox,
    UserEffect,
    UserGoal,
    UserProgress,
)
from progress_engine.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_uuid(value: str) -> bool:
    """Box and custom goal ids are UUID columns; anything else cannot match a row"""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class ProgressStore(ABC):
    """Persistence contract for progress, achievements, rewards and goals"""

    # Progress and ledger

    @abstractmethod
    async def get_or_create_progress(self, user_id: str) -> UserProgress: ...

    @abstractmethod
    async def apply_xp(
        self,
        user_id: str,
        xp_gained: int,
        activity_type: ActivityType,
        description: str,
        questions_increment: int = 0,
        credit_key: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Optional[UserProgress]:
        """Ledger append plus total increment; None if credit_key already used"""

    @abstractmethod
    async def compare_and_set_streak(
        self,
        user_id: str,
        expected_streak: int,
        expected_last_date: Optional[date],
        new_streak: int,
        new_last_date: date,
    ) -> bool: ...

    @abstractmethod
    async def append_ledger_entry(
        self,
        user_id: str,
        xp_gained: int,
        activity_type: ActivityType,
        description: str,
        created_at: datetime,
    ) -> LedgerEntry: ...

    @abstractmethod
    async def get_ledger_entries(self, user_id: str, limit: int = 50) -> list[LedgerEntry]: ...

    @abstractmethod
    async def count_ledger_entries(
        self, user_id: str, activity_type: ActivityType, start: datetime, end: datetime
    ) -> int: ...

    @abstractmethod
    async def sum_ledger_xp(self, user_id: str, start: datetime, end: datetime) -> int: ...

    @abstractmethod
    async def sum_ledger_questions(self, user_id: str, start: datetime, end: datetime) -> int: ...

    @abstractmethod
    async def count_active_days(self, user_id: str, since: Optional[datetime] = None) -> int: ...

    # Achievements

    @abstractmethod
    async def upsert_achievement_definition(self, definition: AchievementDefinition) -> None: ...

    @abstractmethod
    async def get_achievement_definition(self, achievement_id: str) -> Optional[AchievementDefinition]: ...

    @abstractmethod
    async def insert_achievement_unlock(
        self, user_id: str, achievement_id: str, unlocked_at: datetime
    ) -> bool: ...

    @abstractmethod
    async def get_achievement_unlocks(self, user_id: str) -> list[AchievementUnlock]: ...

    # Reward boxes, effects, credits

    @abstractmethod
    async def insert_reward_box(
        self,
        user_id: str,
        box_type: BoxType,
        earned_at: datetime,
        dedupe_key: Optional[str] = None,
    ) -> Optional[RewardBox]: ...

    @abstractmethod
    async def get_reward_box(self, box_id: str) -> Optional[RewardBox]: ...

    @abstractmethod
    async def mark_box_opened(
        self, user_id: str, box_id: str, reward: ResolvedReward, opened_at: datetime
    ) -> Optional[RewardBox]: ...

    @abstractmethod
    async def list_reward_boxes(self, user_id: str, unopened_only: bool = False) -> list[RewardBox]: ...

    @abstractmethod
    async def upsert_effect(
        self,
        user_id: str,
        effect_type: EffectType,
        value: int,
        expires_at: datetime,
        now: datetime,
        stack: bool = False,
    ) -> UserEffect: ...

    @abstractmethod
    async def list_active_effects(self, user_id: str, now: datetime) -> list[UserEffect]: ...

    @abstractmethod
    async def consume_effect_charge(
        self, user_id: str, effect_type: EffectType, now: datetime, count: int = 1
    ) -> bool:
        """Take `count` charges from a live effect, all or nothing"""

    @abstractmethod
    async def add_credits(self, user_id: str, credit_type: str, amount: int) -> int: ...

    @abstractmethod
    async def get_credits(self, user_id: str, credit_type: str) -> int: ...

    # Daily goals

    @abstractmethod
    async def insert_daily_goal_if_absent(self, goal: DailyGoal) -> bool: ...

    @abstractmethod
    async def get_daily_goal(self, user_id: str, goal_date: date) -> Optional[DailyGoal]: ...

    @abstractmethod
    async def increment_daily_goal(
        self, user_id: str, goal_date: date, delta: GoalProgressDelta
    ) -> Optional[DailyGoal]: ...

    @abstractmethod
    async def update_daily_goal_targets(
        self,
        user_id: str,
        goal_date: date,
        target_questions: int,
        target_duration: int,
        target_subjects: int,
    ) -> Optional[DailyGoal]: ...

    @abstractmethod
    async def set_daily_goal_approval_required(
        self, user_id: str, goal_date: date, required: bool
    ) -> Optional[DailyGoal]: ...

    @abstractmethod
    async def approve_daily_goal(
        self, user_id: str, goal_date: date, approved_at: datetime, note: Optional[str] = None
    ) -> bool: ...

    @abstractmethod
    async def revoke_daily_goal_approval(self, user_id: str, goal_date: date) -> Optional[DailyGoal]: ...

    @abstractmethod
    async def list_daily_goals(self, user_id: str, start: date, end: date) -> list[DailyGoal]: ...

    # Custom goals

    @abstractmethod
    async def insert_user_goal(
        self,
        user_id: str,
        goal_date: date,
        title: str,
        target_value: int,
        unit: str = "count",
        manual_approval_required: bool = True,
    ) -> UserGoal: ...

    @abstractmethod
    async def get_user_goal(self, user_id: str, goal_id: str) -> Optional[UserGoal]: ...

    @abstractmethod
    async def increment_user_goal(self, user_id: str, goal_id: str, delta: int) -> Optional[UserGoal]: ...

    @abstractmethod
    async def set_user_goal_approval(
        self, user_id: str, goal_id: str, approved: bool, approved_at: Optional[datetime]
    ) -> Optional[UserGoal]: ...

    @abstractmethod
    async def deactivate_user_goal(self, user_id: str, goal_id: str) -> bool: ...

    @abstractmethod
    async def list_user_goals(self, user_id: str, goal_date: Optional[date] = None) -> list[UserGoal]: ...


class PostgresStore(ProgressStore):
    """
    ProgressStore backed by the pooled PostgreSQL queries

    Driver errors are converted into the engine's exception hierarchy;
    they are never retried here.
    """

    async def _run(
        self,
        operation: str,
        user_id: Optional[str],
        query: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        try:
            return await query(*args)
        except psycopg.Error as e:
            raise wrap_store_exception(e, operation=operation, user_id=user_id) from e

    async def get_or_create_progress(self, user_id):
        return await self._run("get_or_create_progress", user_id, queries.get_or_create_progress, user_id)

    async def apply_xp(
        self,
        user_id,
        xp_gained,
        activity_type,
        description,
        questions_increment=0,
        credit_key=None,
        created_at=None,
    ):
        return await self._run(
            "apply_xp", user_id, queries.apply_xp,
            user_id, xp_gained, activity_type, description, questions_increment, credit_key, created_at or now_utc(),
        )

    async def compare_and_set_streak(self, user_id, expected_streak, expected_last_date, new_streak, new_last_date):
        return await self._run(
            "compare_and_set_streak", user_id, queries.compare_and_set_streak,
            user_id, expected_streak, expected_last_date, new_streak, new_last_date,
        )

    async def append_ledger_entry(self, user_id, xp_gained, activity_type, description, created_at):
        return await self._run(
            "append_ledger_entry", user_id, queries.append_ledger_entry,
            user_id, xp_gained, activity_type, description, created_at,
        )

    async def get_ledger_entries(self, user_id, limit=50):
        return await self._run("get_ledger_entries", user_id, queries.get_ledger_entries, user_id, limit)

    async def count_ledger_entries(self, user_id, activity_type, start, end):
        return await self._run(
            "count_ledger_entries", user_id, queries.count_ledger_entries, user_id, activity_type, start, end
        )

    async def sum_ledger_xp(self, user_id, start, end):
        return await self._run("sum_ledger_xp", user_id, queries.sum_ledger_xp, user_id, start, end)

    async def sum_ledger_questions(self, user_id, start, end):
        return await self._run(
            "sum_ledger_questions", user_id, queries.sum_ledger_questions, user_id, start, end
        )

    async def count_active_days(self, user_id, since=None):
        return await self._run("count_active_days", user_id, queries.count_active_days, user_id, since)

    async def upsert_achievement_definition(self, definition):
        return await self._run(
            "upsert_achievement_definition", None, queries.upsert_achievement_definition, definition
        )

    async def get_achievement_definition(self, achievement_id):
        return await self._run(
            "get_achievement_definition", None, queries.get_achievement_definition, achievement_id
        )

    async def insert_achievement_unlock(self, user_id, achievement_id, unlocked_at):
        return await self._run(
            "insert_achievement_unlock", user_id, queries.insert_achievement_unlock,
            user_id, achievement_id, unlocked_at,
        )

    async def get_achievement_unlocks(self, user_id):
        return await self._run("get_achievement_unlocks", user_id, queries.get_achievement_unlocks, user_id)

    async def insert_reward_box(self, user_id, box_type, earned_at, dedupe_key=None):
        return await self._run(
            "insert_reward_box", user_id, queries.insert_reward_box, user_id, box_type, earned_at, dedupe_key
        )

    async def get_reward_box(self, box_id):
        if not is_uuid(box_id):
            return None
        return await self._run("get_reward_box", None, queries.get_reward_box, box_id)

    async def mark_box_opened(self, user_id, box_id, reward, opened_at):
        if not is_uuid(box_id):
            return None
        return await self._run(
            "mark_box_opened", user_id, queries.mark_box_opened, user_id, box_id, reward, opened_at
        )

    async def list_reward_boxes(self, user_id, unopened_only=False):
        return await self._run("list_reward_boxes", user_id, queries.list_reward_boxes, user_id, unopened_only)

    async def upsert_effect(self, user_id, effect_type, value, expires_at, now, stack=False):
        return await self._run(
            "upsert_effect", user_id, queries.upsert_effect,
            user_id, effect_type, value, expires_at, now, stack,
        )

    async def list_active_effects(self, user_id, now):
        return await self._run("list_active_effects", user_id, queries.list_active_effects, user_id, now)

    async def consume_effect_charge(self, user_id, effect_type, now, count=1):
        return await self._run(
            "consume_effect_charge", user_id, queries.consume_effect_charge, user_id, effect_type, now, count
        )

    async def add_credits(self, user_id, credit_type, amount):
        return await self._run("add_credits", user_id, queries.add_credits, user_id, credit_type, amount)

    async def get_credits(self, user_id, credit_type):
        return await self._run("get_credits", user_id, queries.get_credits, user_id, credit_type)

    async def insert_daily_goal_if_absent(self, goal):
        return await self._run(
            "insert_daily_goal_if_absent", goal.user_id, queries.insert_daily_goal_if_absent, goal
        )

    async def get_daily_goal(self, user_id, goal_date):
        return await self._run("get_daily_goal", user_id, queries.get_daily_goal, user_id, goal_date)

    async def increment_daily_goal(self, user_id, goal_date, delta):
        return await self._run(
            "increment_daily_goal", user_id, queries.increment_daily_goal, user_id, goal_date, delta
        )

    async def update_daily_goal_targets(self, user_id, goal_date, target_questions, target_duration, target_subjects):
        return await self._run(
            "update_daily_goal_targets", user_id, queries.update_daily_goal_targets,
            user_id, goal_date, target_questions, target_duration, target_subjects,
        )

    async def set_daily_goal_approval_required(self, user_id, goal_date, required):
        return await self._run(
            "set_daily_goal_approval_required", user_id, queries.set_daily_goal_approval_required,
            user_id, goal_date, required,
        )

    async def approve_daily_goal(self, user_id, goal_date, approved_at, note=None):
        return await self._run(
            "approve_daily_goal", user_id, queries.approve_daily_goal, user_id, goal_date, approved_at, note
        )

    async def revoke_daily_goal_approval(self, user_id, goal_date):
        return await self._run(
            "revoke_daily_goal_approval", user_id, queries.revoke_daily_goal_approval, user_id, goal_date
        )

    async def list_daily_goals(self, user_id, start, end):
        return await self._run("list_daily_goals", user_id, queries.list_daily_goals, user_id, start, end)

    async def insert_user_goal(
        self, user_id, goal_date, title, target_value, unit="count", manual_approval_required=True
    ):
        return await self._run(
            "insert_user_goal", user_id, queries.insert_user_goal,
            user_id, goal_date, title, target_value, unit, manual_approval_required,
        )

    async def get_user_goal(self, user_id, goal_id):
        if not is_uuid(goal_id):
            return None
        return await self._run("get_user_goal", user_id, queries.get_user_goal, user_id, goal_id)

    async def increment_user_goal(self, user_id, goal_id, delta):
        if not is_uuid(goal_id):
            return None
        return await self._run(
            "increment_user_goal", user_id, queries.increment_user_goal, user_id, goal_id, delta
        )

    async def set_user_goal_approval(self, user_id, goal_id, approved, approved_at):
        if not is_uuid(goal_id):
            return None
        return await self._run(
            "set_user_goal_approval", user_id, queries.set_user_goal_approval,
            user_id, goal_id, approved, approved_at,
        )

    async def deactivate_user_goal(self, user_id, goal_id):
        if not is_uuid(goal_id):
            return False
        return await self._run("deactivate_user_goal", user_id, queries.deactivate_user_goal, user_id, goal_id)

    async def list_user_goals(self, user_id, goal_date=None):
        return await self._run("list_user_goals", user_id, queries.list_user_goals, user_id, goal_date)
