"""Unit tests for the record store adapters (progress_engine/db/store.py, memory_store.py)"""
import asyncio
import pytest
import psycopg
from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

from progress_engine.db.memory_store import MemoryStore
from progress_engine.db.store import PostgresStore, is_uuid
from progress_engine.exceptions import ConnectionError, QueryError, RecordNotFoundError
from progress_engine.gamification import (
    AchievementEvaluator,
    GoalTracker,
    RewardBoxEngine,
    XPCalculator,
    default_achievement_catalog,
    default_reward_catalog,
)
from progress_engine.models import ActivityType, BoxType, DailyGoal, EffectType, GoalProgressDelta


# ============================================================================
# PostgresStore
# ============================================================================

@pytest.mark.asyncio
async def test_postgres_store_delegates_to_queries(test_user_id, now):
    with patch('progress_engine.db.store.queries.compare_and_set_streak', new=AsyncMock(return_value=True)) as q:
        moved = await PostgresStore().compare_and_set_streak(test_user_id, 0, None, 1, now.date())

    assert moved is True
    q.assert_awaited_once_with(test_user_id, 0, None, 1, now.date())


@pytest.mark.asyncio
async def test_postgres_store_fills_ledger_timestamp(test_user_id):
    with patch('progress_engine.db.store.queries.apply_xp', new=AsyncMock(return_value=None)) as q:
        await PostgresStore().apply_xp(test_user_id, 10, ActivityType.QUESTION_SOLVED, "Question solved")

    args = q.await_args[0]
    assert args[:6] == (test_user_id, 10, ActivityType.QUESTION_SOLVED, "Question solved", 0, None)
    assert args[6].tzinfo is not None


@pytest.mark.asyncio
async def test_postgres_store_wraps_connection_failures(test_user_id):
    failing = AsyncMock(side_effect=psycopg.OperationalError("connection refused"))
    with patch('progress_engine.db.store.queries.get_or_create_progress', new=failing):
        with pytest.raises(ConnectionError) as exc_info:
            await PostgresStore().get_or_create_progress(test_user_id)

    assert exc_info.value.operation == "get_or_create_progress"
    assert isinstance(exc_info.value.__cause__, psycopg.OperationalError)


@pytest.mark.asyncio
async def test_postgres_store_wraps_query_failures(test_user_id):
    failing = AsyncMock(side_effect=psycopg.errors.UndefinedTable("relation does not exist"))
    with patch('progress_engine.db.store.queries.get_credits', new=failing):
        with pytest.raises(QueryError):
            await PostgresStore().get_credits(test_user_id, "questions")


def test_is_uuid():
    assert is_uuid("8c1f4a52-3b9e-4d6a-9f0e-2a7c5d1b6e43") is True
    assert is_uuid("not-a-box") is False
    assert is_uuid("") is False


@pytest.mark.asyncio
async def test_postgres_store_malformed_ids_match_nothing(test_user_id, now):
    store = PostgresStore()
    names = [
        "get_reward_box", "mark_box_opened", "get_user_goal",
        "increment_user_goal", "set_user_goal_approval", "deactivate_user_goal",
    ]
    mocks = {name: AsyncMock() for name in names}
    with patch.multiple("progress_engine.db.store.queries", **mocks):
        assert await store.get_reward_box("not-a-box") is None
        assert await store.mark_box_opened(test_user_id, "not-a-box", None, now) is None
        assert await store.get_user_goal(test_user_id, "42") is None
        assert await store.increment_user_goal(test_user_id, "42", 1) is None
        assert await store.set_user_goal_approval(test_user_id, "42", True, now) is None
        assert await store.deactivate_user_goal(test_user_id, "42") is False

    for mock in mocks.values():
        mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_malformed_goal_id_is_not_found_on_both_stores(test_user_id):
    for store in (PostgresStore(), MemoryStore()):
        tracker = GoalTracker(store, XPCalculator(store))
        with patch("progress_engine.db.store.queries.get_user_goal", new=AsyncMock()) as query:
            with pytest.raises(RecordNotFoundError):
                await tracker.update_custom_goal(test_user_id, "not-a-goal", 1)
        query.assert_not_awaited()


@pytest.mark.asyncio
async def test_malformed_box_id_is_not_found(test_user_id, now):
    store = PostgresStore()
    xp = XPCalculator(store)
    engine = RewardBoxEngine(
        store, xp, AchievementEvaluator(store, xp, default_achievement_catalog()), default_reward_catalog()
    )

    with patch("progress_engine.db.store.queries.get_reward_box", new=AsyncMock()) as query:
        with pytest.raises(RecordNotFoundError) as exc_info:
            await engine.open_box(test_user_id, "box-1", now=now)

    assert exc_info.value.operation == "open_box"
    query.assert_not_awaited()


# ============================================================================
# MemoryStore
# ============================================================================

@pytest.mark.asyncio
async def test_memory_store_returns_copies(test_user_id):
    store = MemoryStore()
    progress = await store.get_or_create_progress(test_user_id)
    progress.total_xp = 999

    assert (await store.get_or_create_progress(test_user_id)).total_xp == 0


@pytest.mark.asyncio
async def test_memory_store_credit_key_per_user(test_user_id, other_user_id):
    store = MemoryStore()

    first = await store.apply_xp(test_user_id, 50, ActivityType.DAILY_GOAL, "goal", credit_key="daily_goal:x")
    duplicate = await store.apply_xp(test_user_id, 50, ActivityType.DAILY_GOAL, "goal", credit_key="daily_goal:x")
    other = await store.apply_xp(other_user_id, 50, ActivityType.DAILY_GOAL, "goal", credit_key="daily_goal:x")

    assert first.total_xp == 50
    assert duplicate is None
    assert other.total_xp == 50
    assert len(await store.get_ledger_entries(test_user_id)) == 1


@pytest.mark.asyncio
async def test_memory_store_streak_compare_and_set(test_user_id):
    store = MemoryStore()
    await store.get_or_create_progress(test_user_id)
    day = date(2026, 3, 10)

    results = await asyncio.gather(*[
        store.compare_and_set_streak(test_user_id, 0, None, 1, day) for _ in range(3)
    ])

    assert results.count(True) == 1
    progress = await store.get_or_create_progress(test_user_id)
    assert progress.study_streak == 1
    assert progress.last_activity_date == day


@pytest.mark.asyncio
async def test_memory_store_box_dedupe_is_per_user(test_user_id, other_user_id, now):
    store = MemoryStore()

    assert await store.insert_reward_box(test_user_id, BoxType.DAILY, now, "daily:2026-03-10") is not None
    assert await store.insert_reward_box(test_user_id, BoxType.DAILY, now, "daily:2026-03-10") is None
    assert await store.insert_reward_box(other_user_id, BoxType.DAILY, now, "daily:2026-03-10") is not None
    assert await store.insert_reward_box(test_user_id, BoxType.SPECIAL, now) is not None


@pytest.mark.asyncio
async def test_memory_store_effect_upsert_and_consume(test_user_id, now):
    store = MemoryStore()
    expires = now + timedelta(days=7)

    await store.upsert_effect(test_user_id, EffectType.STREAK_FREEZE, 1, expires, now, stack=True)
    effect = await store.upsert_effect(test_user_id, EffectType.STREAK_FREEZE, 1, expires, now, stack=True)
    assert effect.value == 2

    assert await store.consume_effect_charge(test_user_id, EffectType.STREAK_FREEZE, now, count=3) is False
    assert await store.consume_effect_charge(test_user_id, EffectType.STREAK_FREEZE, now, count=2) is True
    assert await store.list_active_effects(test_user_id, now) == []


@pytest.mark.asyncio
async def test_memory_store_expired_effect_is_replaced(test_user_id, now):
    store = MemoryStore()
    await store.upsert_effect(test_user_id, EffectType.DOUBLE_XP, 2, now + timedelta(hours=1), now)

    later = now + timedelta(hours=3)
    effect = await store.upsert_effect(test_user_id, EffectType.DOUBLE_XP, 2, later + timedelta(hours=2), later)

    assert effect.value == 2
    assert effect.expires_at == later + timedelta(hours=2)


@pytest.mark.asyncio
async def test_memory_store_daily_goal_insert_if_absent(test_user_id, today):
    store = MemoryStore()
    goal = DailyGoal(
        user_id=test_user_id, goal_date=today, target_questions=5, target_duration=45, target_subjects=2
    )

    assert await store.insert_daily_goal_if_absent(goal) is True
    await store.increment_daily_goal(test_user_id, today, GoalProgressDelta(questions=3))
    assert await store.insert_daily_goal_if_absent(goal) is False
    assert (await store.get_daily_goal(test_user_id, today)).achieved_questions == 3
