"""
XP, Level and Milestone Rules

Pure functions shared by every engine component.

Leveling Curve:
- 100 XP per level, linear: level = total_xp // 100 + 1

XP Award Rules:
- Question solved: 10 XP (x streak multiplier)
- Daily goal completion: 50 XP
- Streak bonus: 25 XP (x streak multiplier at the new streak)
- First login: 10 XP
- Achievement unlocks: carried by the achievement definition

Streak Multipliers:
- 3+ days: 1.2, 7+ days: 1.5, 14+ days: 1.8, 30+ days: 2.0
"""

from typing import Dict, List, Tuple

from progress_engine.models import ActivityType, UserProgress

XP_VALUES: Dict[ActivityType, int] = {
    ActivityType.QUESTION_SOLVED: 10,
    ActivityType.DAILY_GOAL: 50,
    ActivityType.STREAK_BONUS: 25,
    ActivityType.FIRST_LOGIN: 10,
    ActivityType.ACHIEVEMENT: 0,
}

XP_PER_LEVEL = 100

# Highest threshold first
STREAK_MULTIPLIERS: Tuple[Tuple[int, float], ...] = (
    (30, 2.0),
    (14, 1.8),
    (7, 1.5),
    (3, 1.2),
)

STREAK_BONUS_DAYS = (3, 7, 14, 21, 30)

LEVEL_MILESTONES = (5, 10, 20, 50)
XP_MILESTONES = (1000, 2500, 5000, 10000)
QUESTION_MILESTONES = (100, 250, 500, 1000)
STREAK_MILESTONES = (7, 14, 30, 50)


def calculate_level(total_xp: int) -> int:
    """Level for a total XP amount"""
    return max(1, total_xp // XP_PER_LEVEL + 1)


def level_progress(total_xp: int) -> Dict[str, int]:
    """
    Level breakdown for display

    Returns:
        {
            'current_level': int,
            'xp_in_current_level': int,
            'xp_to_next_level': int,
            'total_xp_for_next_level': int
        }
    """
    level = calculate_level(total_xp)
    xp_in_level = max(0, total_xp) - (level - 1) * XP_PER_LEVEL
    return {
        "current_level": level,
        "xp_in_current_level": xp_in_level,
        "xp_to_next_level": XP_PER_LEVEL - xp_in_level,
        "total_xp_for_next_level": level * XP_PER_LEVEL,
    }


def get_streak_multiplier(streak_days: int) -> float:
    """Multiplier of the highest streak threshold met"""
    for days, multiplier in STREAK_MULTIPLIERS:
        if streak_days >= days:
            return multiplier
    return 1.0


def streak_bonus_xp(new_streak: int) -> int:
    """Bonus for reaching a streak bonus day, 0 otherwise"""
    if new_streak not in STREAK_BONUS_DAYS:
        return 0
    return int(XP_VALUES[ActivityType.STREAK_BONUS] * get_streak_multiplier(new_streak))


def _crossed(thresholds: Tuple[int, ...], before: int, after: int) -> List[int]:
    return [t for t in thresholds if before < t <= after]


def crossed_milestones(before: UserProgress, after: UserProgress) -> List[Tuple[str, int]]:
    """
    Milestone thresholds crossed between two snapshots of the same user

    Returns:
        List of (kind, threshold) with kind in level/xp/questions/streak
    """
    crossings: List[Tuple[str, int]] = []
    crossings += [("level", t) for t in _crossed(LEVEL_MILESTONES, before.current_level, after.current_level)]
    crossings += [("xp", t) for t in _crossed(XP_MILESTONES, before.total_xp, after.total_xp)]
    crossings += [
        ("questions", t)
        for t in _crossed(QUESTION_MILESTONES, before.questions_solved, after.questions_solved)
    ]
    crossings += [("streak", t) for t in _crossed(STREAK_MILESTONES, before.study_streak, after.study_streak)]
    return crossings
