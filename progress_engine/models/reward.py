"""Reward box models"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime

from progress_engine.models.achievement import Rarity, UnlockedAchievement
from progress_engine.models.progress import XPResult


class BoxType(str, Enum):
    """Events that issue a reward box"""
    DAILY = "daily"
    WEEKLY = "weekly"
    ACHIEVEMENT = "achievement"
    MILESTONE = "milestone"
    SPECIAL = "special"


class RewardType(str, Enum):
    """What a resolved reward does when applied"""
    XP = "xp"
    DOUBLE_XP = "double_xp"
    STREAK_FREEZE = "streak_freeze"
    BONUS_QUESTIONS = "bonus_questions"
    SPECIAL_BADGE = "special_badge"


class EffectType(str, Enum):
    """Time-boxed effects"""
    DOUBLE_XP = "double_xp"
    STREAK_FREEZE = "streak_freeze"


class ResolvedReward(BaseModel):
    """Contents of an opened box"""
    model_config = ConfigDict(frozen=True)

    type: RewardType
    name: str
    description: str
    icon: str = ""
    value: int = Field(ge=1)
    rarity: Rarity
    duration_hours: Optional[int] = Field(default=None, ge=1)


class RewardBox(BaseModel):
    """Two-phase container: issued unopened, resolved once on open"""
    id: str
    user_id: str
    box_type: BoxType
    earned_at: datetime
    opened_at: Optional[datetime] = None
    is_opened: bool = False
    reward: Optional[ResolvedReward] = None
    dedupe_key: Optional[str] = None


class UserEffect(BaseModel):
    """Active temporary effect; value is the multiplier or remaining charges"""
    user_id: str
    effect_type: EffectType
    value: int
    expires_at: datetime
    is_active: bool = True

    def is_live(self, moment: datetime) -> bool:
        return self.is_active and self.value > 0 and self.expires_at > moment


class OpenBoxResult(BaseModel):
    """Outcome of opening a box"""
    box: RewardBox
    reward: ResolvedReward
    xp: Optional[XPResult] = None
    effect: Optional[UserEffect] = None
    credits_total: Optional[int] = None
    badge: Optional[UnlockedAchievement] = None
    milestone_boxes: List[RewardBox] = Field(default_factory=list)

    @property
    def xp_awarded(self) -> int:
        xp_awarded = self.xp.xp_gained if self.xp else 0
        if self.badge:
            xp_awarded += self.badge.xp_awarded
        return xp_awarded
