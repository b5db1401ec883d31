"""Unit tests for the study streak tracker (progress_engine/gamification/streak_system.py)"""
import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from progress_engine.models import ActivityType, EffectType


async def _seed_streak(store, user_id, streak, last_date):
    await store.get_or_create_progress(user_id)
    assert await store.compare_and_set_streak(user_id, 0, None, streak, last_date)


@pytest.mark.asyncio
async def test_first_activity_starts_streak(streaks, store, test_user_id, now, today):
    result = await streaks.update_streak(test_user_id, now=now)

    assert result.new_streak == 1
    assert result.old_streak == 0
    assert result.streak_bonus == 0
    assert result.changed is True
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.last_activity_date == today


@pytest.mark.asyncio
async def test_same_day_is_noop(streaks, store, test_user_id, now, today):
    await _seed_streak(store, test_user_id, 4, today)

    result = await streaks.update_streak(test_user_id, now=now)

    assert result.new_streak == 4
    assert result.streak_bonus == 0
    assert result.changed is False


@pytest.mark.asyncio
async def test_next_day_continues_streak(streaks, store, test_user_id, now, today):
    await _seed_streak(store, test_user_id, 4, today - timedelta(days=1))

    result = await streaks.update_streak(test_user_id, now=now)

    assert result.new_streak == 5
    assert result.old_streak == 4
    assert result.streak_bonus == 0
    assert result.milestone_reached is False


@pytest.mark.asyncio
async def test_gap_resets_streak(streaks, store, test_user_id, now, today):
    await _seed_streak(store, test_user_id, 12, today - timedelta(days=3))

    result = await streaks.update_streak(test_user_id, now=now)

    assert result.new_streak == 1
    assert result.streak_protected is False
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.last_activity_date == today


@pytest.mark.asyncio
async def test_older_date_never_rewinds(streaks, store, test_user_id, now, today):
    await _seed_streak(store, test_user_id, 3, today)

    result = await streaks.update_streak(test_user_id, activity_date=today - timedelta(days=2), now=now)

    assert result.changed is False
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.study_streak == 3
    assert progress.last_activity_date == today


@pytest.mark.asyncio
async def test_seventh_day_awards_bonus(streaks, store, test_user_id, now, today):
    """Streak 6 → 7 grants floor(25 * 1.5) = 37 bonus XP"""
    await _seed_streak(store, test_user_id, 6, today - timedelta(days=1))

    result = await streaks.update_streak(test_user_id, now=now)

    assert result.new_streak == 7
    assert result.milestone_reached is True
    assert result.streak_bonus == 37
    entries = await store.get_ledger_entries(test_user_id)
    assert [e.activity_type for e in entries] == [ActivityType.STREAK_BONUS]
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.total_xp == 37


@pytest.mark.asyncio
async def test_freeze_bridges_missed_day(streaks, store, test_user_id, now, today):
    await _seed_streak(store, test_user_id, 5, today - timedelta(days=2))
    await store.upsert_effect(test_user_id, EffectType.STREAK_FREEZE, 1, now + timedelta(days=7), now)

    result = await streaks.update_streak(test_user_id, now=now)

    assert result.new_streak == 6
    assert result.streak_protected is True
    assert await store.list_active_effects(test_user_id, now) == []


@pytest.mark.asyncio
async def test_freeze_needs_one_charge_per_missed_day(streaks, store, test_user_id, now, today):
    await _seed_streak(store, test_user_id, 5, today - timedelta(days=4))
    await store.upsert_effect(test_user_id, EffectType.STREAK_FREEZE, 1, now + timedelta(days=7), now)

    result = await streaks.update_streak(test_user_id, now=now)

    assert result.new_streak == 1
    assert result.streak_protected is False
    effects = await store.list_active_effects(test_user_id, now)
    assert effects[0].value == 1


@pytest.mark.asyncio
async def test_freeze_lost_before_consume_resets_streak(streaks, store, test_user_id, now, today):
    await _seed_streak(store, test_user_id, 6, today - timedelta(days=2))
    await store.upsert_effect(test_user_id, EffectType.STREAK_FREEZE, 1, now + timedelta(days=7), now)

    with patch.object(store, "consume_effect_charge", new=AsyncMock(return_value=False)) as consume:
        result = await streaks.update_streak(test_user_id, now=now)

    consume.assert_awaited_once_with(test_user_id, EffectType.STREAK_FREEZE, now, count=1)
    assert result.new_streak == 1
    assert result.streak_protected is False
    assert result.streak_bonus == 0
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.study_streak == 1
    assert progress.last_activity_date == today
    assert progress.total_xp == 0


@pytest.mark.asyncio
async def test_concurrent_evaluations_transition_once(streaks, store, test_user_id, now, today):
    """Five simultaneous evaluations on day 3 → one transition, one bonus"""
    await _seed_streak(store, test_user_id, 2, today - timedelta(days=1))

    results = await asyncio.gather(*[streaks.update_streak(test_user_id, now=now) for _ in range(5)])

    assert sum(1 for r in results if r.changed) == 1
    assert all(r.new_streak == 3 for r in results)
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.study_streak == 3
    assert progress.total_xp == 30
