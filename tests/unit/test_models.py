"""Unit tests for pydantic models (progress_engine/models/)"""
import pytest
from datetime import date, datetime, timedelta, timezone
from pydantic import ValidationError as PydanticValidationError

from progress_engine.models import (
    AchievementCategory,
    AchievementCriteria,
    AchievementDefinition,
    AchievementTrigger,
    BoxType,
    CriteriaType,
    DailyGoal,
    EffectType,
    OpenBoxResult,
    Rarity,
    ResolvedReward,
    RewardBox,
    RewardType,
    UnlockedAchievement,
    UserEffect,
    UserProgress,
    XPResult,
)

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def _goal(**overrides):
    values = dict(
        user_id="user-1",
        goal_date=date(2026, 3, 10),
        target_questions=5,
        target_duration=45,
        target_subjects=2,
    )
    values.update(overrides)
    return DailyGoal(**values)


# ============================================================================
# Progress
# ============================================================================

def test_user_progress_defaults():
    progress = UserProgress(user_id="user-1")

    assert progress.total_xp == 0
    assert progress.current_level == 1
    assert progress.study_streak == 0
    assert progress.last_activity_date is None


def test_user_progress_rejects_negative_xp():
    with pytest.raises(PydanticValidationError):
        UserProgress(user_id="user-1", total_xp=-1)


# ============================================================================
# Daily Goal
# ============================================================================

def test_daily_goal_completion():
    assert _goal(achieved_questions=5, achieved_duration=45, achieved_subjects=2).is_completed is True
    assert _goal(achieved_questions=5, achieved_duration=44, achieved_subjects=2).is_completed is False


def test_daily_goal_credit_eligibility():
    complete = dict(achieved_questions=5, achieved_duration=45, achieved_subjects=2)

    assert _goal(**complete).is_credit_eligible is True
    assert _goal(**complete, manual_approval_required=True).is_credit_eligible is False
    assert _goal(**complete, manual_approval_required=True, is_manually_approved=True).is_credit_eligible is True
    assert _goal(manual_approval_required=True, is_manually_approved=True).is_credit_eligible is False


def test_daily_goal_progress_percentage():
    # 60% + 20% + 50% averaged
    goal = _goal(achieved_questions=3, achieved_duration=9, achieved_subjects=1)

    assert goal.progress_percentage == 43


def test_daily_goal_rejects_zero_target():
    with pytest.raises(PydanticValidationError):
        _goal(target_questions=0)


# ============================================================================
# Achievements & Rewards
# ============================================================================

def test_achievement_definition_is_frozen():
    definition = AchievementDefinition(
        id="first_question",
        name="First Question",
        category=AchievementCategory.STUDY,
        criteria=AchievementCriteria(type=CriteriaType.QUESTIONS_SOLVED, threshold=1),
        xp_reward=10,
        rarity=Rarity.COMMON,
    )

    with pytest.raises(PydanticValidationError):
        definition.xp_reward = 20


def test_criteria_threshold_must_be_positive():
    with pytest.raises(PydanticValidationError):
        AchievementCriteria(type=CriteriaType.LEVEL_REACHED, threshold=0)


def test_resolved_reward_value_must_be_positive():
    with pytest.raises(PydanticValidationError):
        ResolvedReward(type=RewardType.XP, name="XP", description="none", value=0, rarity=Rarity.COMMON)


def test_user_effect_is_live():
    effect = UserEffect(user_id="user-1", effect_type=EffectType.DOUBLE_XP, value=2, expires_at=NOW)

    assert effect.is_live(NOW - timedelta(seconds=1)) is True
    assert effect.is_live(NOW) is False
    assert effect.model_copy(update={"value": 0}).is_live(NOW - timedelta(hours=1)) is False
    assert effect.model_copy(update={"is_active": False}).is_live(NOW - timedelta(hours=1)) is False


def test_open_box_result_xp_awarded_includes_badge():
    reward = ResolvedReward(
        type=RewardType.SPECIAL_BADGE, name="Lucky Charm", description="badge", value=1, rarity=Rarity.EPIC
    )
    box = RewardBox(id="b-1", user_id="user-1", box_type=BoxType.DAILY, earned_at=NOW, is_opened=True, reward=reward)
    definition = AchievementDefinition(
        id="special_lucky_charm",
        name="Lucky Charm",
        category=AchievementCategory.SPECIAL,
        criteria=AchievementCriteria(type=CriteriaType.SPECIAL_EVENT, threshold=1),
        xp_reward=100,
        rarity=Rarity.EPIC,
    )

    result = OpenBoxResult(
        box=box,
        reward=reward,
        badge=UnlockedAchievement(achievement=definition, unlocked_at=NOW, xp_awarded=100),
    )
    assert result.xp_awarded == 100

    result.xp = XPResult(xp_gained=5, old_total_xp=0, new_total_xp=5, old_level=1, new_level=1, leveled_up=False)
    assert result.xp_awarded == 105


def test_enum_values_are_wire_strings():
    assert BoxType("milestone") == BoxType.MILESTONE
    assert RewardType.BONUS_QUESTIONS.value == "bonus_questions"
    assert Rarity("legendary") == Rarity.LEGENDARY


def test_achievement_triggers():
    assert [t.value for t in AchievementTrigger] == ["question_solved", "login", "setup_complete"]
