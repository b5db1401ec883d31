"""Data models for the progress engine"""
from progress_engine.models.progress import (
    ActivityType,
    LedgerEntry,
    StreakResult,
    UserProgress,
    XPActivity,
    XPResult,
)
from progress_engine.models.achievement import (
    AchievementCategory,
    AchievementCriteria,
    AchievementDefinition,
    AchievementProgress,
    AchievementTrigger,
    AchievementUnlock,
    CriteriaType,
    Rarity,
    Timeframe,
    UnlockedAchievement,
)
from progress_engine.models.reward import (
    BoxType,
    EffectType,
    OpenBoxResult,
    RewardBox,
    RewardType,
    ResolvedReward,
    UserEffect,
)
from progress_engine.models.goal import (
    DailyGoal,
    GoalCreditResult,
    GoalProgressDelta,
    GoalSummary,
    UserGoal,
)
from progress_engine.models.outcome import ActivityOutcome

__all__ = [
    "ActivityType",
    "ActivityOutcome",
    "LedgerEntry",
    "StreakResult",
    "UserProgress",
    "XPActivity",
    "XPResult",
    "AchievementCategory",
    "AchievementCriteria",
    "AchievementDefinition",
    "AchievementProgress",
    "AchievementTrigger",
    "AchievementUnlock",
    "CriteriaType",
    "Rarity",
    "Timeframe",
    "UnlockedAchievement",
    "BoxType",
    "EffectType",
    "OpenBoxResult",
    "RewardBox",
    "RewardType",
    "ResolvedReward",
    "UserEffect",
    "DailyGoal",
    "GoalCreditResult",
    "GoalProgressDelta",
    "GoalSummary",
    "UserGoal",
]
