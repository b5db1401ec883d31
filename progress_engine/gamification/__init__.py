"""
Progress and rewards engine components

- XP and leveling (single writer of totals)
- Daily study streak
- Achievement catalog evaluation
- Reward boxes (issue, open, apply)
- Daily and custom goals with manual approval
"""

from progress_engine.gamification.xp_system import XPCalculator
from progress_engine.gamification.streak_system import StreakTracker
from progress_engine.gamification.achievement_system import AchievementEvaluator
from progress_engine.gamification.reward_boxes import RewardBoxEngine
from progress_engine.gamification.goals import GoalDefaults, GoalTracker
from progress_engine.gamification.catalog import (
    AchievementCatalog,
    RewardCatalog,
    default_achievement_catalog,
    default_reward_catalog,
)

__all__ = [
    "XPCalculator",
    "StreakTracker",
    "AchievementEvaluator",
    "RewardBoxEngine",
    "GoalDefaults",
    "GoalTracker",
    "AchievementCatalog",
    "RewardCatalog",
    "default_achievement_catalog",
    "default_reward_catalog",
]
