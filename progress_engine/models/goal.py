"""Daily goal and custom goal models"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime

from progress_engine.models.progress import XPResult
from progress_engine.models.reward import RewardBox


class DailyGoal(BaseModel):
    """
    One aggregate goal per user per calendar date

    achieved_* values are always within [0, target_*].
    """
    user_id: str
    goal_date: date
    target_questions: int = Field(ge=1)
    target_duration: int = Field(ge=1)
    target_subjects: int = Field(ge=1)
    achieved_questions: int = Field(default=0, ge=0)
    achieved_duration: int = Field(default=0, ge=0)
    achieved_subjects: int = Field(default=0, ge=0)
    manual_approval_required: bool = False
    is_manually_approved: bool = False
    approved_at: Optional[datetime] = None
    approval_note: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return (
            self.achieved_questions >= self.target_questions
            and self.achieved_duration >= self.target_duration
            and self.achieved_subjects >= self.target_subjects
        )

    @property
    def is_credit_eligible(self) -> bool:
        """Completion grants credit unless manual approval gates it"""
        if not self.is_completed:
            return False
        return not self.manual_approval_required or self.is_manually_approved

    @property
    def progress_percentage(self) -> int:
        parts = [
            self.achieved_questions / self.target_questions,
            self.achieved_duration / self.target_duration,
            self.achieved_subjects / self.target_subjects,
        ]
        return round(sum(min(p, 1.0) for p in parts) / len(parts) * 100)


class UserGoal(BaseModel):
    """Custom goal defined by the user"""
    id: str
    user_id: str
    goal_date: date
    title: str
    target_value: int = Field(ge=1)
    current_value: int = Field(default=0, ge=0)
    unit: str = "count"
    is_completed: bool = False
    is_active: bool = True
    manual_approval_required: bool = True
    is_manually_approved: bool = False
    approved_at: Optional[datetime] = None


class GoalProgressDelta(BaseModel):
    """Additive progress for the daily goal; results are clamped to [0, target]"""
    questions: int = 0
    duration: int = 0
    subjects: int = 0


class GoalCreditResult(BaseModel):
    """Result of approving or auto-crediting a daily goal"""
    goal: DailyGoal
    credited: bool
    xp: Optional[XPResult] = None
    milestone_boxes: List[RewardBox] = Field(default_factory=list)


class GoalSummary(BaseModel):
    """Aggregate view of a day's goals"""
    completed_goals: int
    total_goals: int
    completion_rate: int
    main_progress: float
    questions_today: int = 0
    question_target: int = 0
