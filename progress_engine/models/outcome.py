"""Aggregate result of one recorded user action"""
from pydantic import BaseModel, Field
from typing import Optional

from progress_engine.models.achievement import UnlockedAchievement
from progress_engine.models.goal import DailyGoal, GoalCreditResult
from progress_engine.models.progress import StreakResult, XPResult
from progress_engine.models.reward import RewardBox


class ActivityOutcome(BaseModel):
    """Everything that happened as a result of one user action"""
    user_id: str
    xp: Optional[XPResult] = None
    streak: Optional[StreakResult] = None
    achievements: list[UnlockedAchievement] = Field(default_factory=list)
    daily_goal: Optional[DailyGoal] = None
    goal_credit: Optional[GoalCreditResult] = None
    boxes_awarded: list[RewardBox] = Field(default_factory=list)
    total_xp_gained: int = 0
