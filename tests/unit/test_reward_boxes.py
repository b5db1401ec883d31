"""Unit tests for reward boxes (progress_engine/gamification/reward_boxes.py)"""
import asyncio
import random
import pytest
from collections import Counter
from datetime import timedelta

from progress_engine.exceptions import BoxAlreadyOpenedError, RecordNotFoundError
from progress_engine.gamification import RewardBoxEngine, RewardCatalog, default_reward_catalog
from progress_engine.gamification.catalog import DEFAULT_RARITY_WEIGHTS
from progress_engine.gamification.reward_boxes import special_badge_id
from progress_engine.models import (
    ActivityType,
    BoxType,
    EffectType,
    Rarity,
    ResolvedReward,
    RewardType,
    UserProgress,
)


class FixedDraws(random.Random):
    """random() returns queued draws in [0, 1); choice() picks the first item"""

    def __init__(self, draws):
        super().__init__(0)
        self.draws = list(draws)

    def random(self):
        return self.draws.pop(0)

    def choice(self, seq):
        return seq[0]


def _single_reward_catalog(reward: ResolvedReward) -> RewardCatalog:
    weights = {box_type: {Rarity.COMMON: 100} for box_type in BoxType}
    return RewardCatalog(weights, {Rarity.COMMON: [reward]})


def _engine(store, xp, achievements, reward):
    return RewardBoxEngine(store, xp, achievements, _single_reward_catalog(reward), rng=random.Random(7))


# ============================================================================
# Catalog
# ============================================================================

def test_default_weights_match_table():
    catalog = default_reward_catalog()

    assert dict(catalog.weights_for(BoxType.DAILY)) == {
        Rarity.COMMON: 70, Rarity.RARE: 25, Rarity.EPIC: 5, Rarity.LEGENDARY: 0,
    }
    assert dict(catalog.weights_for(BoxType.SPECIAL)) == {
        Rarity.COMMON: 10, Rarity.RARE: 20, Rarity.EPIC: 40, Rarity.LEGENDARY: 30,
    }
    for box_type in BoxType:
        assert sum(weight for _, weight in catalog.weights_for(box_type)) == 100


def test_catalog_rejects_weights_not_summing_to_100():
    weights = dict(DEFAULT_RARITY_WEIGHTS)
    weights[BoxType.DAILY] = {Rarity.COMMON: 70, Rarity.RARE: 20}

    with pytest.raises(ValueError, match="sum to 90"):
        RewardCatalog(weights, {rarity: default_reward_catalog().rewards_for(rarity) for rarity in Rarity})


def test_catalog_rejects_rollable_rarity_without_rewards():
    weights = {box_type: {Rarity.COMMON: 50, Rarity.RARE: 50} for box_type in BoxType}
    reward = ResolvedReward(type=RewardType.XP, name="XP", description="xp", value=10, rarity=Rarity.COMMON)

    with pytest.raises(ValueError, match="no rewards"):
        RewardCatalog(weights, {Rarity.COMMON: [reward]})


# ============================================================================
# Rarity Roll
# ============================================================================

@pytest.mark.parametrize("draw,expected", [
    (0.0, Rarity.COMMON),
    (0.6999, Rarity.COMMON),
    (0.70, Rarity.COMMON),
    (0.7001, Rarity.RARE),
    (0.95, Rarity.RARE),
    (0.951, Rarity.EPIC),
    (0.9999, Rarity.EPIC),
])
def test_daily_roll_walks_cumulative_weights(store, xp, achievements, reward_catalog, draw, expected):
    engine = RewardBoxEngine(store, xp, achievements, reward_catalog, rng=FixedDraws([draw]))

    assert engine.roll_rarity(BoxType.DAILY) == expected


def test_special_box_can_roll_legendary(store, xp, achievements, reward_catalog):
    engine = RewardBoxEngine(store, xp, achievements, reward_catalog, rng=FixedDraws([0.9999]))

    assert engine.roll_rarity(BoxType.SPECIAL) == Rarity.LEGENDARY


@pytest.mark.asyncio
async def test_daily_box_frequencies_with_fixed_seed(store, xp, achievements, reward_catalog):
    """1000 daily boxes across 100 users approximate 70/25/5/0"""
    engine = RewardBoxEngine(store, xp, achievements, reward_catalog, rng=random.Random(20240601))
    rarities = Counter()

    for i in range(1000):
        user_id = f"sim-{i % 100}"
        box = await engine.award_box(user_id, BoxType.DAILY)
        result = await engine.open_box(user_id, box.id)
        rarities[result.reward.rarity] += 1

    assert abs(rarities[Rarity.COMMON] - 700) <= 60
    assert abs(rarities[Rarity.RARE] - 250) <= 55
    assert abs(rarities[Rarity.EPIC] - 50) <= 30
    assert rarities[Rarity.LEGENDARY] == 0


# ============================================================================
# Issuance
# ============================================================================

@pytest.mark.asyncio
async def test_award_box_issues_unopened_with_audit_entry(boxes, store, test_user_id, now):
    box = await boxes.award_box(test_user_id, BoxType.WEEKLY, reason="Active all week", now=now)

    assert box.is_opened is False
    assert box.reward is None
    entries = await store.get_ledger_entries(test_user_id)
    assert len(entries) == 1
    assert entries[0].xp_gained == 0
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.total_xp == 0


@pytest.mark.asyncio
async def test_award_box_without_reason_skips_audit(boxes, store, test_user_id, now):
    await boxes.award_box(test_user_id, BoxType.SPECIAL, now=now)

    assert await store.get_ledger_entries(test_user_id) == []


@pytest.mark.asyncio
async def test_dedupe_key_issues_once(boxes, test_user_id, today, now):
    first = await boxes.grant_daily_box(test_user_id, today, now=now)
    second = await boxes.grant_daily_box(test_user_id, today, now=now)
    next_day = await boxes.grant_daily_box(test_user_id, today + timedelta(days=1), now=now)

    assert first is not None
    assert second is None
    assert next_day is not None


@pytest.mark.asyncio
async def test_weekly_box_once_per_iso_week(boxes, test_user_id, today, now):
    # 2026-03-10 is a Tuesday; Sunday 2026-03-15 is the same ISO week
    first = await boxes.grant_weekly_box(test_user_id, today, now=now)
    same_week = await boxes.grant_weekly_box(test_user_id, today + timedelta(days=5), now=now)
    next_week = await boxes.grant_weekly_box(test_user_id, today + timedelta(days=6), now=now)

    assert first.dedupe_key == "weekly:2026-W11"
    assert same_week is None
    assert next_week is not None


@pytest.mark.asyncio
async def test_milestone_crossing_issues_one_box(boxes, test_user_id, now):
    before = UserProgress(user_id=test_user_id, total_xp=390, current_level=4)
    after = UserProgress(user_id=test_user_id, total_xp=410, current_level=5)

    first = await boxes.check_milestones(test_user_id, before, after, now=now)
    repeated = await boxes.check_milestones(test_user_id, before, after, now=now)

    assert len(first) == 1
    assert first[0].box_type == BoxType.MILESTONE
    assert first[0].dedupe_key == "milestone:level:5"
    assert repeated == []


# ============================================================================
# Opening
# ============================================================================

@pytest.mark.asyncio
async def test_open_box_resolves_and_is_terminal(boxes, reward_catalog, test_user_id, now):
    box = await boxes.award_box(test_user_id, BoxType.DAILY, now=now)

    result = await boxes.open_box(test_user_id, box.id, now=now)

    assert result.box.is_opened is True
    assert result.box.opened_at == now
    assert result.box.reward == result.reward
    assert result.reward in reward_catalog.rewards_for(result.reward.rarity)

    with pytest.raises(BoxAlreadyOpenedError):
        await boxes.open_box(test_user_id, box.id, now=now)

    stored = (await boxes.get_user_boxes(test_user_id))[0]
    assert stored.reward == result.reward


@pytest.mark.asyncio
async def test_open_box_of_other_user_is_not_found(boxes, test_user_id, other_user_id, now):
    box = await boxes.award_box(test_user_id, BoxType.DAILY, now=now)

    with pytest.raises(RecordNotFoundError):
        await boxes.open_box(other_user_id, box.id, now=now)

    assert len(await boxes.get_unopened_boxes(test_user_id)) == 1


@pytest.mark.asyncio
async def test_open_missing_box_is_not_found(boxes, test_user_id):
    with pytest.raises(RecordNotFoundError):
        await boxes.open_box(test_user_id, "does-not-exist")


@pytest.mark.asyncio
async def test_concurrent_open_applies_one_reward(store, xp, achievements, test_user_id, now):
    reward = ResolvedReward(type=RewardType.XP, name="XP Pack", description="50 XP", value=50, rarity=Rarity.COMMON)
    engine = _engine(store, xp, achievements, reward)
    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)

    results = await asyncio.gather(
        engine.open_box(test_user_id, box.id, now=now),
        engine.open_box(test_user_id, box.id, now=now),
        return_exceptions=True,
    )

    opened = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(opened) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], BoxAlreadyOpenedError)
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.total_xp == 50


# ============================================================================
# Reward Application
# ============================================================================

@pytest.mark.asyncio
async def test_xp_reward_goes_through_calculator(store, xp, achievements, test_user_id, now):
    reward = ResolvedReward(type=RewardType.XP, name="XP", description="25 XP", value=25, rarity=Rarity.COMMON)
    engine = _engine(store, xp, achievements, reward)
    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)

    result = await engine.open_box(test_user_id, box.id, now=now)

    assert result.xp.xp_gained == 25
    assert result.xp_awarded == 25
    entries = await store.get_ledger_entries(test_user_id)
    assert entries[0].activity_type == ActivityType.ACHIEVEMENT


@pytest.mark.asyncio
async def test_double_xp_reward_creates_timed_effect(store, xp, achievements, test_user_id, now):
    reward = ResolvedReward(
        type=RewardType.DOUBLE_XP, name="2x", description="2x", value=2, rarity=Rarity.COMMON, duration_hours=6
    )
    engine = _engine(store, xp, achievements, reward)
    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)

    result = await engine.open_box(test_user_id, box.id, now=now)

    assert result.effect.effect_type == EffectType.DOUBLE_XP
    assert result.effect.expires_at == now + timedelta(hours=6)
    assert len(await engine.get_active_effects(test_user_id, now=now + timedelta(hours=5))) == 1
    assert await engine.get_active_effects(test_user_id, now=now + timedelta(hours=7)) == []


@pytest.mark.asyncio
async def test_streak_freeze_rewards_stack_charges(store, xp, achievements, test_user_id, now):
    reward = ResolvedReward(
        type=RewardType.STREAK_FREEZE, name="Shield", description="shield", value=3, rarity=Rarity.COMMON
    )
    engine = _engine(store, xp, achievements, reward)

    for _ in range(2):
        box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)
        result = await engine.open_box(test_user_id, box.id, now=now)

    assert result.effect.effect_type == EffectType.STREAK_FREEZE
    assert result.effect.value == 6
    assert result.effect.expires_at == now + timedelta(days=21)


@pytest.mark.asyncio
async def test_bonus_questions_add_credits(store, xp, achievements, test_user_id, now):
    reward = ResolvedReward(
        type=RewardType.BONUS_QUESTIONS, name="Extra", description="5 credits", value=5, rarity=Rarity.COMMON
    )
    engine = _engine(store, xp, achievements, reward)

    for _ in range(2):
        box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)
        await engine.open_box(test_user_id, box.id, now=now)

    assert await engine.get_bonus_credits(test_user_id) == 10


@pytest.mark.asyncio
async def test_special_badge_unlocks_dedicated_achievement(store, xp, achievements, test_user_id, now):
    reward = ResolvedReward(
        type=RewardType.SPECIAL_BADGE, name="Lucky Charm", description="badge", icon="🍀", value=1,
        rarity=Rarity.COMMON,
    )
    engine = _engine(store, xp, achievements, reward)

    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)
    first = await engine.open_box(test_user_id, box.id, now=now)
    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)
    second = await engine.open_box(test_user_id, box.id, now=now)

    assert special_badge_id("Lucky Charm") == "special_lucky_charm"
    assert first.badge.achievement.id == "special_lucky_charm"
    assert first.badge.xp_awarded == 100
    assert second.badge is None
    assert await store.get_achievement_definition("special_lucky_charm") is not None
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.total_xp == 100


# ============================================================================
# Milestones From Box XP
# ============================================================================

@pytest.mark.asyncio
async def test_xp_reward_crossing_threshold_issues_milestone_box(store, xp, achievements, test_user_id, now):
    await store.apply_xp(test_user_id, 950, ActivityType.ACHIEVEMENT, "seed", created_at=now)
    reward = ResolvedReward(type=RewardType.XP, name="XP", description="100 XP", value=100, rarity=Rarity.COMMON)
    engine = _engine(store, xp, achievements, reward)
    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)

    result = await engine.open_box(test_user_id, box.id, now=now)

    assert result.xp.new_total_xp == 1050
    assert [b.dedupe_key for b in result.milestone_boxes] == ["milestone:xp:1000"]
    unopened = await engine.get_unopened_boxes(test_user_id)
    assert [b.dedupe_key for b in unopened] == ["milestone:xp:1000"]


@pytest.mark.asyncio
async def test_badge_xp_crossing_level_issues_milestone_box(store, xp, achievements, test_user_id, now):
    await store.apply_xp(test_user_id, 350, ActivityType.ACHIEVEMENT, "seed", created_at=now)
    reward = ResolvedReward(
        type=RewardType.SPECIAL_BADGE, name="Night Owl", description="badge", value=1, rarity=Rarity.COMMON
    )
    engine = _engine(store, xp, achievements, reward)
    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)

    result = await engine.open_box(test_user_id, box.id, now=now)

    assert result.badge.xp_awarded == 100
    assert [b.dedupe_key for b in result.milestone_boxes] == ["milestone:level:5"]


@pytest.mark.asyncio
async def test_non_xp_reward_issues_no_milestone_box(store, xp, achievements, test_user_id, now):
    await store.apply_xp(test_user_id, 999, ActivityType.ACHIEVEMENT, "seed", created_at=now)
    reward = ResolvedReward(
        type=RewardType.BONUS_QUESTIONS, name="Extra", description="5 credits", value=5, rarity=Rarity.COMMON
    )
    engine = _engine(store, xp, achievements, reward)
    box = await engine.award_box(test_user_id, BoxType.DAILY, now=now)

    result = await engine.open_box(test_user_id, box.id, now=now)

    assert result.milestone_boxes == []
