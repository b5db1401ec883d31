"""Achievement models for gamification"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class AchievementCategory(str, Enum):
    """Achievement categories"""
    STUDY = "study"
    STREAK = "streak"
    LEVEL = "level"
    SPECIAL = "special"
    PROGRESS = "progress"


class Rarity(str, Enum):
    """Rarity shared by achievements and reward box contents"""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class CriteriaType(str, Enum):
    """What an achievement measures"""
    QUESTIONS_SOLVED = "questions_solved"
    STREAK_REACHED = "streak_reached"
    LEVEL_REACHED = "level_reached"
    XP_EARNED = "xp_earned"
    LOGIN_DAYS = "login_days"
    SPECIAL_EVENT = "special_event"


class Timeframe(str, Enum):
    """Aggregation window for ledger-backed criteria"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


class AchievementTrigger(str, Enum):
    """What caused an achievement check"""
    QUESTION_SOLVED = "question_solved"
    LOGIN = "login"
    SETUP_COMPLETE = "setup_complete"


class AchievementCriteria(BaseModel):
    """Unlock condition"""
    model_config = ConfigDict(frozen=True)

    type: CriteriaType
    threshold: int = Field(ge=1)
    timeframe: Optional[Timeframe] = None


class AchievementDefinition(BaseModel):
    """Catalog entry"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    icon: str = ""
    category: AchievementCategory
    criteria: AchievementCriteria
    xp_reward: int = Field(default=0, ge=0)
    rarity: Rarity


class AchievementUnlock(BaseModel):
    """At most one per (user_id, achievement_id)"""
    user_id: str
    achievement_id: str
    unlocked_at: datetime


class UnlockedAchievement(BaseModel):
    """A newly unlocked achievement and the XP it granted"""
    achievement: AchievementDefinition
    unlocked_at: datetime
    xp_awarded: int = 0


class AchievementProgress(BaseModel):
    """Progress toward one catalog entry"""
    achievement: AchievementDefinition
    is_unlocked: bool
    current: int
    required: int
    percentage: int
    unlocked_at: Optional[datetime] = None
