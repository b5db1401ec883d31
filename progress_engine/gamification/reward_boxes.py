"""
Reward Box System

Two-phase lifecycle:
- issue: cheap insert of an unopened box, optionally deduplicated by key
- open: roll rarity and reward, flip is_opened in one conditional update,
  and only the caller that won the flip applies the reward

XP from an opened box (an XP reward or a badge) is checked against the
milestone thresholds like any other XP.

Rarity selection draws uniformly from [0, 100) and walks the box type's
weights in common, rare, epic, legendary order, picking the first bucket
whose cumulative weight meets or exceeds the draw.
"""

import random
import re
from typing import List, Optional, Tuple
from datetime import date, datetime, timedelta
import logging

from progress_engine.config import REWARD_BOX_AUDIT_LOG, SPECIAL_BADGE_XP
from progress_engine.db.store import ProgressStore
from progress_engine.exceptions import BoxAlreadyOpenedError, RecordNotFoundError
from progress_engine.gamification.achievement_system import AchievementEvaluator
from progress_engine.gamification.catalog import RewardCatalog
from progress_engine.gamification.rules import crossed_milestones
from progress_engine.gamification.xp_system import XPCalculator
from progress_engine.models import (
    AchievementCategory,
    AchievementCriteria,
    AchievementDefinition,
    ActivityType,
    BoxType,
    CriteriaType,
    EffectType,
    OpenBoxResult,
    Rarity,
    ResolvedReward,
    RewardBox,
    RewardType,
    UserEffect,
    UserProgress,
    XPActivity,
)
from progress_engine.utils.datetime_helpers import ensure_utc, iso_week_key

logger = logging.getLogger(__name__)

BONUS_QUESTIONS_CREDIT = "questions"
DOUBLE_XP_MULTIPLIER = 2
DEFAULT_DOUBLE_XP_HOURS = 2
STREAK_FREEZE_DAYS_PER_CHARGE = 7


def special_badge_id(name: str) -> str:
    """Stable achievement id for a badge reward, e.g. 'special_lucky_charm'"""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return f"special_{slug}"


class RewardBoxEngine:
    """Issues, opens and applies reward boxes"""

    def __init__(
        self,
        store: ProgressStore,
        xp_calculator: XPCalculator,
        achievements: AchievementEvaluator,
        reward_catalog: RewardCatalog,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.xp = xp_calculator
        self.achievements = achievements
        self.catalog = reward_catalog
        self.rng = rng or random.Random()

    # ==========================================
    # Issuance
    # ==========================================

    async def award_box(
        self,
        user_id: str,
        box_type: BoxType,
        reason: Optional[str] = None,
        dedupe_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[RewardBox]:
        """
        Issue an unopened box

        Args:
            user_id: User ID
            box_type: Determines the rarity weights used at open time
            reason: Written to the ledger as a zero-XP audit entry
            dedupe_key: At most one box per user per key

        Returns:
            The new box, or None if dedupe_key was already issued
        """
        now = ensure_utc(now)
        box = await self.store.insert_reward_box(user_id, box_type, now, dedupe_key)
        if box is None:
            logger.debug(f"Box {dedupe_key} already issued to user {user_id}")
            return None

        if reason and REWARD_BOX_AUDIT_LOG:
            await self.store.append_ledger_entry(
                user_id,
                0,
                ActivityType.ACHIEVEMENT,
                f"Reward box earned ({box_type.value}): {reason}",
                now,
            )

        logger.info(f"Issued {box_type.value} box {box.id} to user {user_id}")
        return box

    async def grant_daily_box(self, user_id: str, day: date, now: Optional[datetime] = None) -> Optional[RewardBox]:
        return await self.award_box(
            user_id, BoxType.DAILY, reason="Daily login", dedupe_key=f"daily:{day.isoformat()}", now=now
        )

    async def grant_weekly_box(self, user_id: str, day: date, now: Optional[datetime] = None) -> Optional[RewardBox]:
        week = iso_week_key(day)
        return await self.award_box(
            user_id, BoxType.WEEKLY, reason=f"Active in week {week}", dedupe_key=f"weekly:{week}", now=now
        )

    async def grant_achievement_box(
        self,
        user_id: str,
        achievement_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[RewardBox]:
        return await self.award_box(
            user_id,
            BoxType.ACHIEVEMENT,
            reason=f"Achievement {achievement_id}",
            dedupe_key=f"achievement:{achievement_id}",
            now=now,
        )

    async def check_milestones(
        self,
        user_id: str,
        before: UserProgress,
        after: UserProgress,
        now: Optional[datetime] = None,
    ) -> List[RewardBox]:
        """
        Issue one milestone box per threshold crossed between two snapshots

        Streak thresholds can be crossed again after a reset, so their key
        carries the date; level/XP/question totals never decrease.
        """
        now = ensure_utc(now)
        boxes = []
        for kind, threshold in crossed_milestones(before, after):
            dedupe_key = f"milestone:{kind}:{threshold}"
            if kind == "streak":
                dedupe_key += f":{now.date().isoformat()}"
            box = await self.award_box(
                user_id,
                BoxType.MILESTONE,
                reason=f"{kind} milestone {threshold}",
                dedupe_key=dedupe_key,
                now=now,
            )
            if box:
                boxes.append(box)
        return boxes

    # ==========================================
    # Opening
    # ==========================================

    def roll_rarity(self, box_type: BoxType) -> Rarity:
        draw = self.rng.random() * 100
        cumulative = 0
        last_rollable = None
        for rarity, weight in self.catalog.weights_for(box_type):
            if weight <= 0:
                continue
            cumulative += weight
            last_rollable = rarity
            if cumulative >= draw:
                return rarity
        # Only reachable through float rounding at the top of the range
        return last_rollable

    def roll_reward(self, box_type: BoxType) -> ResolvedReward:
        rarity = self.roll_rarity(box_type)
        return self.rng.choice(self.catalog.rewards_for(rarity))

    async def open_box(self, user_id: str, box_id: str, now: Optional[datetime] = None) -> OpenBoxResult:
        """
        Open a box and apply its reward

        Milestone boxes for thresholds crossed by the reward's XP are issued
        and returned in milestone_boxes.

        Raises:
            RecordNotFoundError: box does not exist or belongs to another user
            BoxAlreadyOpenedError: box was already opened (possibly concurrently)
        """
        now = ensure_utc(now)
        box = await self.store.get_reward_box(box_id)
        if box is None or box.user_id != user_id:
            raise RecordNotFoundError(
                message=f"Reward box {box_id} not found",
                record_type="RewardBox",
                record_id=box_id,
                user_id=user_id,
                operation="open_box",
            )
        if box.is_opened:
            raise BoxAlreadyOpenedError(box_id=box_id, user_id=user_id, operation="open_box")

        before = await self.store.get_or_create_progress(user_id)
        reward = self.roll_reward(box.box_type)
        opened = await self.store.mark_box_opened(user_id, box_id, reward, now)
        if opened is None:
            # Another open won the conditional update; its reward stands
            raise BoxAlreadyOpenedError(box_id=box_id, user_id=user_id, operation="open_box")

        logger.info(
            f"User {user_id} opened {box.box_type.value} box {box_id}: "
            f"{reward.rarity.value} {reward.type.value} ({reward.name})"
        )
        result = await self._apply_reward(user_id, opened, reward, now)
        if result.xp_awarded > 0:
            after = await self.store.get_or_create_progress(user_id)
            result.milestone_boxes = await self.check_milestones(user_id, before, after, now=now)
        return result

    async def _apply_reward(
        self,
        user_id: str,
        box: RewardBox,
        reward: ResolvedReward,
        now: datetime,
    ) -> OpenBoxResult:
        result = OpenBoxResult(box=box, reward=reward)

        if reward.type == RewardType.XP:
            result.xp = await self.xp.award_xp(
                user_id,
                XPActivity(type=ActivityType.ACHIEVEMENT, description=reward.description, base_xp=reward.value),
                credit_key=f"box:{box.id}",
                now=now,
            )

        elif reward.type == RewardType.DOUBLE_XP:
            hours = reward.duration_hours or DEFAULT_DOUBLE_XP_HOURS
            result.effect = await self.store.upsert_effect(
                user_id,
                EffectType.DOUBLE_XP,
                DOUBLE_XP_MULTIPLIER,
                now + timedelta(hours=hours),
                now,
                stack=False,
            )

        elif reward.type == RewardType.STREAK_FREEZE:
            result.effect = await self.store.upsert_effect(
                user_id,
                EffectType.STREAK_FREEZE,
                reward.value,
                now + timedelta(days=STREAK_FREEZE_DAYS_PER_CHARGE * reward.value),
                now,
                stack=True,
            )

        elif reward.type == RewardType.BONUS_QUESTIONS:
            result.credits_total = await self.store.add_credits(user_id, BONUS_QUESTIONS_CREDIT, reward.value)

        elif reward.type == RewardType.SPECIAL_BADGE:
            result.badge = await self._award_special_badge(user_id, reward, now)

        return result

    async def _award_special_badge(self, user_id: str, reward: ResolvedReward, now: datetime):
        """Create (or refresh) the badge's achievement definition and unlock it"""
        definition = AchievementDefinition(
            id=special_badge_id(reward.name),
            name=reward.name,
            description=reward.description,
            icon=reward.icon,
            category=AchievementCategory.SPECIAL,
            criteria=AchievementCriteria(type=CriteriaType.SPECIAL_EVENT, threshold=1),
            xp_reward=SPECIAL_BADGE_XP,
            rarity=reward.rarity,
        )
        await self.store.upsert_achievement_definition(definition)
        badge = await self.achievements.unlock(user_id, definition, now=now)
        if badge is None:
            logger.info(f"User {user_id} already holds badge {definition.id}")
        return badge

    # ==========================================
    # Queries
    # ==========================================

    async def get_user_boxes(self, user_id: str) -> List[RewardBox]:
        return await self.store.list_reward_boxes(user_id)

    async def get_unopened_boxes(self, user_id: str) -> List[RewardBox]:
        return await self.store.list_reward_boxes(user_id, unopened_only=True)

    async def get_active_effects(self, user_id: str, now: Optional[datetime] = None) -> List[UserEffect]:
        return await self.store.list_active_effects(user_id, ensure_utc(now))

    async def get_bonus_credits(self, user_id: str) -> int:
        return await self.store.get_credits(user_id, BONUS_QUESTIONS_CREDIT)
