"""Global test fixtures and utilities for progress engine tests"""
import random
import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, date, timezone

from progress_engine.db.memory_store import MemoryStore
from progress_engine.gamification import (
    AchievementEvaluator,
    GoalTracker,
    RewardBoxEngine,
    StreakTracker,
    XPCalculator,
    default_achievement_catalog,
    default_reward_catalog,
)
from progress_engine.services import ProgressService


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def mock_db_cursor():
    """Mock database cursor with standard query results"""
    cursor = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=None)
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.execute = AsyncMock()
    return cursor


@pytest.fixture
def mock_db_connection(mock_db_cursor):
    """Mock pooled connection whose cursor() yields mock_db_cursor"""
    conn = MagicMock()
    conn.cursor.return_value.__aenter__.return_value = mock_db_cursor
    conn.commit = AsyncMock()
    conn.rollback = AsyncMock()
    conn.execute = AsyncMock()
    return conn


# ============================================================================
# User & Time Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "user-123456"


@pytest.fixture
def other_user_id():
    return "user-654321"


@pytest.fixture
def now():
    """Fixed evaluation time (a Tuesday, mid-day UTC)"""
    return datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def today(now):
    return now.date()


# ============================================================================
# Engine Fixtures (in-memory store)
# ============================================================================

@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def rng():
    """Seeded random source so reward rolls are repeatable"""
    return random.Random(1234)


@pytest.fixture
def achievement_catalog():
    return default_achievement_catalog()


@pytest.fixture
def reward_catalog():
    return default_reward_catalog()


@pytest.fixture
def xp(store):
    return XPCalculator(store)


@pytest.fixture
def streaks(store, xp):
    return StreakTracker(store, xp)


@pytest.fixture
def achievements(store, xp, achievement_catalog):
    return AchievementEvaluator(store, xp, achievement_catalog)


@pytest.fixture
def boxes(store, xp, achievements, reward_catalog, rng):
    return RewardBoxEngine(store, xp, achievements, reward_catalog, rng=rng)


@pytest.fixture
def goals(store, xp, boxes):
    return GoalTracker(store, xp, boxes=boxes)


@pytest.fixture
def service(store, xp, streaks, achievements, boxes, goals):
    return ProgressService(store, xp, streaks, achievements, boxes, goals)
