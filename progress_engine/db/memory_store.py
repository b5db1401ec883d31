"""
In-memory ProgressStore

Used by the test suite and by STORE_BACKEND=memory. State is NOT persisted.
Each method yields to the event loop once before its critical section, the
way a database round trip would, and then mutates state without awaiting,
so every operation is atomic on a single event loop.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from progress_engine.db.store import ProgressStore
from progress_engine.gamification.rules import calculate_level
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


def _clamp(value: int, upper: int) -> int:
    return max(0, min(upper, value))


class MemoryStore(ProgressStore):
    """Dictionary-backed store; returned models are copies"""

    def __init__(self):
        self._progress: Dict[str, UserProgress] = {}
        self._ledger: List[LedgerEntry] = []
        self._credit_keys: set = set()
        self._definitions: Dict[str, AchievementDefinition] = {}
        self._unlocks: Dict[Tuple[str, str], AchievementUnlock] = {}
        self._boxes: Dict[str, RewardBox] = {}
        self._box_keys: set = set()
        self._effects: Dict[Tuple[str, EffectType], UserEffect] = {}
        self._credits: Dict[Tuple[str, str], int] = {}
        self._daily_goals: Dict[Tuple[str, date], DailyGoal] = {}
        self._user_goals: Dict[str, UserGoal] = {}
        logger.debug("MemoryStore initialized - progress is NOT persisted")

    async def _round_trip(self) -> None:
        await asyncio.sleep(0)

    # ==========================================
    # Progress and ledger
    # ==========================================

    def _progress_row(self, user_id: str) -> UserProgress:
        if user_id not in self._progress:
            self._progress[user_id] = UserProgress(user_id=user_id, updated_at=now_utc())
        return self._progress[user_id]

    def _append(
        self, user_id, xp_gained, activity_type, description, created_at, credit_key=None, question_count=0
    ) -> LedgerEntry:
        entry = LedgerEntry(
            id=str(uuid4()),
            user_id=user_id,
            xp_gained=xp_gained,
            activity_type=activity_type,
            description=description,
            created_at=created_at,
            credit_key=credit_key,
            question_count=question_count,
        )
        self._ledger.append(entry)
        return entry

    async def get_or_create_progress(self, user_id):
        await self._round_trip()
        return self._progress_row(user_id).model_copy()

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
        await self._round_trip()
        if credit_key is not None:
            if (user_id, credit_key) in self._credit_keys:
                logger.debug(f"Credit {credit_key} already granted to user {user_id}")
                return None
            self._credit_keys.add((user_id, credit_key))

        moment = created_at or now_utc()
        self._append(user_id, xp_gained, activity_type, description, moment, credit_key, questions_increment)

        row = self._progress_row(user_id)
        row.total_xp += xp_gained
        row.current_level = calculate_level(row.total_xp)
        row.questions_solved += questions_increment
        row.updated_at = moment
        return row.model_copy()

    async def compare_and_set_streak(self, user_id, expected_streak, expected_last_date, new_streak, new_last_date):
        await self._round_trip()
        row = self._progress_row(user_id)
        if row.study_streak != expected_streak or row.last_activity_date != expected_last_date:
            return False
        row.study_streak = new_streak
        row.last_activity_date = new_last_date
        row.updated_at = now_utc()
        return True

    async def append_ledger_entry(self, user_id, xp_gained, activity_type, description, created_at):
        await self._round_trip()
        return self._append(user_id, xp_gained, activity_type, description, created_at).model_copy()

    async def get_ledger_entries(self, user_id, limit=50):
        await self._round_trip()
        entries = [e for e in self._ledger if e.user_id == user_id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return [e.model_copy() for e in entries[:limit]]

    async def count_ledger_entries(self, user_id, activity_type, start, end):
        await self._round_trip()
        return sum(
            1 for e in self._ledger
            if e.user_id == user_id and e.activity_type == activity_type and start <= e.created_at < end
        )

    async def sum_ledger_xp(self, user_id, start, end):
        await self._round_trip()
        return sum(e.xp_gained for e in self._ledger if e.user_id == user_id and start <= e.created_at < end)

    async def sum_ledger_questions(self, user_id, start, end):
        await self._round_trip()
        return sum(e.question_count for e in self._ledger if e.user_id == user_id and start <= e.created_at < end)

    async def count_active_days(self, user_id, since=None):
        await self._round_trip()
        return len({
            e.created_at.date() for e in self._ledger
            if e.user_id == user_id and (since is None or e.created_at >= since)
        })

    # ==========================================
    # Achievements
    # ==========================================

    async def upsert_achievement_definition(self, definition):
        await self._round_trip()
        self._definitions[definition.id] = definition

    async def get_achievement_definition(self, achievement_id):
        await self._round_trip()
        return self._definitions.get(achievement_id)

    async def insert_achievement_unlock(self, user_id, achievement_id, unlocked_at):
        await self._round_trip()
        key = (user_id, achievement_id)
        if key in self._unlocks:
            return False
        self._unlocks[key] = AchievementUnlock(
            user_id=user_id, achievement_id=achievement_id, unlocked_at=unlocked_at
        )
        logger.info(f"User {user_id} unlocked achievement {achievement_id}")
        return True

    async def get_achievement_unlocks(self, user_id):
        await self._round_trip()
        unlocks = [u for (owner, _), u in self._unlocks.items() if owner == user_id]
        unlocks.sort(key=lambda u: u.unlocked_at, reverse=True)
        return [u.model_copy() for u in unlocks]

    # ==========================================
    # Reward boxes, effects, credits
    # ==========================================

    async def insert_reward_box(self, user_id, box_type, earned_at, dedupe_key=None):
        await self._round_trip()
        if dedupe_key is not None:
            if (user_id, dedupe_key) in self._box_keys:
                return None
            self._box_keys.add((user_id, dedupe_key))
        box = RewardBox(
            id=str(uuid4()),
            user_id=user_id,
            box_type=box_type,
            earned_at=earned_at,
            dedupe_key=dedupe_key,
        )
        self._boxes[box.id] = box
        return box.model_copy()

    async def get_reward_box(self, box_id):
        await self._round_trip()
        box = self._boxes.get(box_id)
        return box.model_copy() if box else None

    async def mark_box_opened(self, user_id, box_id, reward, opened_at):
        await self._round_trip()
        box = self._boxes.get(box_id)
        if box is None or box.user_id != user_id or box.is_opened:
            return None
        box.is_opened = True
        box.opened_at = opened_at
        box.reward = reward
        return box.model_copy()

    async def list_reward_boxes(self, user_id, unopened_only=False):
        await self._round_trip()
        boxes = [
            b for b in self._boxes.values()
            if b.user_id == user_id and not (unopened_only and b.is_opened)
        ]
        boxes.sort(key=lambda b: b.earned_at, reverse=True)
        return [b.model_copy() for b in boxes]

    async def upsert_effect(self, user_id, effect_type, value, expires_at, now, stack=False):
        await self._round_trip()
        key = (user_id, effect_type)
        current = self._effects.get(key)
        if current is not None and current.is_live(now):
            current.value = current.value + value if stack else value
            current.expires_at = max(current.expires_at, expires_at)
            current.is_active = True
        else:
            current = UserEffect(user_id=user_id, effect_type=effect_type, value=value, expires_at=expires_at)
            self._effects[key] = current
        return current.model_copy()

    async def list_active_effects(self, user_id, now):
        await self._round_trip()
        effects = [e for (owner, _), e in self._effects.items() if owner == user_id and e.is_live(now)]
        effects.sort(key=lambda e: e.effect_type.value)
        return [e.model_copy() for e in effects]

    async def consume_effect_charge(self, user_id, effect_type, now, count=1):
        await self._round_trip()
        effect = self._effects.get((user_id, effect_type))
        if effect is None or not effect.is_live(now) or effect.value < count:
            return False
        effect.value -= count
        effect.is_active = effect.value > 0
        return True

    async def add_credits(self, user_id, credit_type, amount):
        await self._round_trip()
        key = (user_id, credit_type)
        self._credits[key] = self._credits.get(key, 0) + amount
        return self._credits[key]

    async def get_credits(self, user_id, credit_type):
        await self._round_trip()
        return self._credits.get((user_id, credit_type), 0)

    # ==========================================
    # Daily goals
    # ==========================================

    async def insert_daily_goal_if_absent(self, goal):
        await self._round_trip()
        key = (goal.user_id, goal.goal_date)
        if key in self._daily_goals:
            return False
        self._daily_goals[key] = goal.model_copy()
        return True

    async def get_daily_goal(self, user_id, goal_date):
        await self._round_trip()
        goal = self._daily_goals.get((user_id, goal_date))
        return goal.model_copy() if goal else None

    async def increment_daily_goal(self, user_id, goal_date, delta):
        await self._round_trip()
        goal = self._daily_goals.get((user_id, goal_date))
        if goal is None:
            return None
        goal.achieved_questions = _clamp(goal.achieved_questions + delta.questions, goal.target_questions)
        goal.achieved_duration = _clamp(goal.achieved_duration + delta.duration, goal.target_duration)
        goal.achieved_subjects = _clamp(goal.achieved_subjects + delta.subjects, goal.target_subjects)
        return goal.model_copy()

    async def update_daily_goal_targets(self, user_id, goal_date, target_questions, target_duration, target_subjects):
        await self._round_trip()
        goal = self._daily_goals.get((user_id, goal_date))
        if goal is None:
            return None
        goal.target_questions = target_questions
        goal.target_duration = target_duration
        goal.target_subjects = target_subjects
        goal.achieved_questions = min(goal.achieved_questions, target_questions)
        goal.achieved_duration = min(goal.achieved_duration, target_duration)
        goal.achieved_subjects = min(goal.achieved_subjects, target_subjects)
        return goal.model_copy()

    async def set_daily_goal_approval_required(self, user_id, goal_date, required):
        await self._round_trip()
        goal = self._daily_goals.get((user_id, goal_date))
        if goal is None:
            return None
        goal.manual_approval_required = required
        return goal.model_copy()

    async def approve_daily_goal(self, user_id, goal_date, approved_at, note=None):
        await self._round_trip()
        goal = self._daily_goals.get((user_id, goal_date))
        if goal is None or goal.is_manually_approved:
            return False
        goal.is_manually_approved = True
        goal.approved_at = approved_at
        goal.approval_note = note
        return True

    async def revoke_daily_goal_approval(self, user_id, goal_date):
        await self._round_trip()
        goal = self._daily_goals.get((user_id, goal_date))
        if goal is None:
            return None
        goal.is_manually_approved = False
        goal.approved_at = None
        goal.approval_note = None
        return goal.model_copy()

    async def list_daily_goals(self, user_id, start, end):
        await self._round_trip()
        goals = [
            g for (owner, day), g in self._daily_goals.items()
            if owner == user_id and start <= day <= end
        ]
        goals.sort(key=lambda g: g.goal_date, reverse=True)
        return [g.model_copy() for g in goals]

    # ==========================================
    # Custom goals
    # ==========================================

    def _owned_goal(self, user_id: str, goal_id: str) -> Optional[UserGoal]:
        goal = self._user_goals.get(goal_id)
        if goal is None or goal.user_id != user_id:
            return None
        return goal

    async def insert_user_goal(
        self, user_id, goal_date, title, target_value, unit="count", manual_approval_required=True
    ):
        await self._round_trip()
        goal = UserGoal(
            id=str(uuid4()),
            user_id=user_id,
            goal_date=goal_date,
            title=title,
            target_value=target_value,
            unit=unit,
            manual_approval_required=manual_approval_required,
        )
        self._user_goals[goal.id] = goal
        logger.info(f"Created custom goal {goal.id} for user {user_id}")
        return goal.model_copy()

    async def get_user_goal(self, user_id, goal_id):
        await self._round_trip()
        goal = self._owned_goal(user_id, goal_id)
        return goal.model_copy() if goal else None

    async def increment_user_goal(self, user_id, goal_id, delta):
        await self._round_trip()
        goal = self._owned_goal(user_id, goal_id)
        if goal is None or not goal.is_active:
            return None
        goal.current_value = _clamp(goal.current_value + delta, goal.target_value)
        goal.is_completed = goal.current_value >= goal.target_value
        return goal.model_copy()

    async def set_user_goal_approval(self, user_id, goal_id, approved, approved_at):
        await self._round_trip()
        goal = self._owned_goal(user_id, goal_id)
        if goal is None or not goal.is_active:
            return None
        goal.is_manually_approved = approved
        goal.approved_at = approved_at
        return goal.model_copy()

    async def deactivate_user_goal(self, user_id, goal_id):
        await self._round_trip()
        goal = self._owned_goal(user_id, goal_id)
        if goal is None or not goal.is_active:
            return False
        goal.is_active = False
        return True

    async def list_user_goals(self, user_id, goal_date=None):
        await self._round_trip()
        goals = [
            g for g in self._user_goals.values()
            if g.user_id == user_id and g.is_active and (goal_date is None or g.goal_date == goal_date)
        ]
        goals.sort(key=lambda g: (-g.goal_date.toordinal(), g.title))
        return [g.model_copy() for g in goals]
