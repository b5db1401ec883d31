"""Progress, ledger and XP models"""
from enum import Enum
from typing import Optional
from datetime import date, datetime
from pydantic import BaseModel, Field


class ActivityType(str, Enum):
    """Ledger activity types"""
    QUESTION_SOLVED = "question_solved"
    DAILY_GOAL = "daily_goal"
    STREAK_BONUS = "streak_bonus"
    FIRST_LOGIN = "first_login"
    ACHIEVEMENT = "achievement"


class UserProgress(BaseModel):
    """Per-user totals; current_level is always total_xp // 100 + 1"""
    user_id: str
    total_xp: int = Field(default=0, ge=0)
    current_level: int = Field(default=1, ge=1)
    questions_solved: int = Field(default=0, ge=0)
    study_streak: int = Field(default=0, ge=0)
    last_activity_date: Optional[date] = None
    updated_at: Optional[datetime] = None


class LedgerEntry(BaseModel):
    """Append-only record of an XP-granting event"""
    id: str
    user_id: str
    xp_gained: int
    activity_type: ActivityType
    description: str
    created_at: datetime
    credit_key: Optional[str] = None
    question_count: int = 0


class XPActivity(BaseModel):
    """An activity to be converted into XP"""
    type: ActivityType
    description: str
    base_xp: Optional[int] = Field(default=None, ge=0)
    multiplier: Optional[float] = Field(default=None, gt=0)


class XPResult(BaseModel):
    """Outcome of a single XP award"""
    xp_gained: int
    old_total_xp: int
    new_total_xp: int
    old_level: int
    new_level: int
    leveled_up: bool


class StreakResult(BaseModel):
    """Outcome of a streak evaluation"""
    new_streak: int
    old_streak: int
    streak_bonus: int = 0
    streak_protected: bool = False
    milestone_reached: bool = False
    changed: bool = True
