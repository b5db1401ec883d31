"""
Achievement and Reward Catalogs

Immutable configuration built once at process start and passed explicitly
into the evaluator and the reward box engine. Tests build alternate catalogs
with the same constructors.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

from progress_engine.models import (
    AchievementCategory,
    AchievementCriteria,
    AchievementDefinition,
    BoxType,
    CriteriaType,
    Rarity,
    ResolvedReward,
    RewardType,
    Timeframe,
)

RARITY_ORDER: Tuple[Rarity, ...] = (Rarity.COMMON, Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY)


class AchievementCatalog:
    """Read-only, ordered collection of achievement definitions"""

    def __init__(self, definitions: Iterable[AchievementDefinition]):
        ordered: Dict[str, AchievementDefinition] = {}
        for definition in definitions:
            if definition.id in ordered:
                raise ValueError(f"Duplicate achievement id '{definition.id}'")
            ordered[definition.id] = definition
        self._by_id: Mapping[str, AchievementDefinition] = MappingProxyType(ordered)

    def __iter__(self) -> Iterator[AchievementDefinition]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, achievement_id: object) -> bool:
        return achievement_id in self._by_id

    def get(self, achievement_id: str) -> Optional[AchievementDefinition]:
        return self._by_id.get(achievement_id)


class RewardCatalog:
    """
    Rarity weights per box type and reward lists per rarity

    Weights are percentages and must sum to 100 for every box type.
    """

    def __init__(
        self,
        weights: Mapping[BoxType, Mapping[Rarity, int]],
        rewards: Mapping[Rarity, Sequence[ResolvedReward]],
    ):
        frozen_weights = {}
        for box_type in BoxType:
            table = weights.get(box_type)
            if table is None:
                raise ValueError(f"Missing rarity weights for box type '{box_type.value}'")
            if any(weight < 0 for weight in table.values()):
                raise ValueError(f"Negative rarity weight for box type '{box_type.value}'")
            total = sum(table.get(rarity, 0) for rarity in RARITY_ORDER)
            if total != 100:
                raise ValueError(f"Rarity weights for '{box_type.value}' sum to {total}, expected 100")
            frozen_weights[box_type] = tuple((rarity, table.get(rarity, 0)) for rarity in RARITY_ORDER)

        frozen_rewards = {}
        for rarity in RARITY_ORDER:
            pool = tuple(rewards.get(rarity, ()))
            if any(reward.rarity != rarity for reward in pool):
                raise ValueError(f"Reward listed under '{rarity.value}' has a different rarity")
            frozen_rewards[rarity] = pool

        for box_type, table in frozen_weights.items():
            for rarity, weight in table:
                if weight > 0 and not frozen_rewards[rarity]:
                    raise ValueError(
                        f"Box type '{box_type.value}' can roll '{rarity.value}' but no rewards are defined"
                    )

        self._weights = MappingProxyType(frozen_weights)
        self._rewards = MappingProxyType(frozen_rewards)

    def weights_for(self, box_type: BoxType) -> Tuple[Tuple[Rarity, int], ...]:
        """(rarity, weight) pairs in roll order"""
        return self._weights[box_type]

    def rewards_for(self, rarity: Rarity) -> Tuple[ResolvedReward, ...]:
        return self._rewards[rarity]


def _achievement(
    id: str,
    name: str,
    description: str,
    icon: str,
    category: AchievementCategory,
    criteria_type: CriteriaType,
    threshold: int,
    xp_reward: int,
    rarity: Rarity,
    timeframe: Optional[Timeframe] = None,
) -> AchievementDefinition:
    return AchievementDefinition(
        id=id,
        name=name,
        description=description,
        icon=icon,
        category=category,
        criteria=AchievementCriteria(type=criteria_type, threshold=threshold, timeframe=timeframe),
        xp_reward=xp_reward,
        rarity=rarity,
    )


def default_achievement_catalog() -> AchievementCatalog:
    """The stock achievement set"""
    S, ST, L, SP, P = (
        AchievementCategory.STUDY,
        AchievementCategory.STREAK,
        AchievementCategory.LEVEL,
        AchievementCategory.SPECIAL,
        AchievementCategory.PROGRESS,
    )
    Q, STR, LVL, XP, LOG, EVT = (
        CriteriaType.QUESTIONS_SOLVED,
        CriteriaType.STREAK_REACHED,
        CriteriaType.LEVEL_REACHED,
        CriteriaType.XP_EARNED,
        CriteriaType.LOGIN_DAYS,
        CriteriaType.SPECIAL_EVENT,
    )
    C, R, E, LG = Rarity.COMMON, Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY
    return AchievementCatalog([
        _achievement("first_steps", "First Steps", "Completed account setup", "👣", SP, EVT, 1, 10, C),
        _achievement("first_question", "First Question", "Solved your first question", "🎯", S, Q, 1, 10, C),
        _achievement("question_novice", "Question Novice", "Solved 10 questions", "📘", S, Q, 10, 25, C),
        _achievement("question_apprentice", "Question Apprentice", "Solved 50 questions", "📗", S, Q, 50, 50, R),
        _achievement("question_century", "Century", "Solved 100 questions", "💯", S, Q, 100, 100, R),
        _achievement("question_master", "Question Master", "Solved 500 questions", "🧠", S, Q, 500, 250, E),
        _achievement("daily_sprinter", "Daily Sprinter", "Solved 5 questions in one day", "⚡", P, Q, 5, 20, C,
                     Timeframe.DAILY),
        _achievement("daily_marathon", "Daily Marathon", "Solved 20 questions in one day", "🏃", P, Q, 20, 50, R,
                     Timeframe.DAILY),
        _achievement("streak_starter", "On a Roll", "Studied 3 days in a row", "🔥", ST, STR, 3, 15, C),
        _achievement("week_warrior", "Week Warrior", "Studied 7 days in a row", "📅", ST, STR, 7, 50, R),
        _achievement("fortnight_focus", "Fortnight Focus", "Studied 14 days in a row", "🎖️", ST, STR, 14, 100, E),
        _achievement("monthly_legend", "Monthly Legend", "Studied 30 days in a row", "👑", ST, STR, 30, 250, LG),
        _achievement("level_5", "Rising Star", "Reached level 5", "⭐", L, LVL, 5, 50, R),
        _achievement("level_10", "Scholar", "Reached level 10", "🌟", L, LVL, 10, 100, E),
        _achievement("level_25", "Sage", "Reached level 25", "💫", L, LVL, 25, 250, LG),
        _achievement("xp_1000", "XP Collector", "Earned 1000 XP", "💎", P, XP, 1000, 50, R),
        _achievement("daily_xp_100", "Power Day", "Earned 100 XP in one day", "🚀", P, XP, 100, 25, C,
                     Timeframe.DAILY),
        _achievement("weekly_regular", "Regular", "Active on 7 days within a week", "🗓️", P, LOG, 7, 50, R,
                     Timeframe.WEEKLY),
        _achievement("dedicated_learner", "Dedicated Learner", "Active on 30 different days", "🏅", P, LOG, 30,
                     100, E, Timeframe.ALL_TIME),
    ])


def _reward(
    type: RewardType,
    name: str,
    description: str,
    icon: str,
    value: int,
    rarity: Rarity,
    duration_hours: Optional[int] = None,
) -> ResolvedReward:
    return ResolvedReward(
        type=type,
        name=name,
        description=description,
        icon=icon,
        value=value,
        rarity=rarity,
        duration_hours=duration_hours,
    )


DEFAULT_RARITY_WEIGHTS: Mapping[BoxType, Mapping[Rarity, int]] = {
    BoxType.DAILY: {Rarity.COMMON: 70, Rarity.RARE: 25, Rarity.EPIC: 5, Rarity.LEGENDARY: 0},
    BoxType.WEEKLY: {Rarity.COMMON: 40, Rarity.RARE: 35, Rarity.EPIC: 20, Rarity.LEGENDARY: 5},
    BoxType.ACHIEVEMENT: {Rarity.COMMON: 30, Rarity.RARE: 40, Rarity.EPIC: 25, Rarity.LEGENDARY: 5},
    BoxType.MILESTONE: {Rarity.COMMON: 20, Rarity.RARE: 30, Rarity.EPIC: 35, Rarity.LEGENDARY: 15},
    BoxType.SPECIAL: {Rarity.COMMON: 10, Rarity.RARE: 20, Rarity.EPIC: 40, Rarity.LEGENDARY: 30},
}


def default_reward_catalog() -> RewardCatalog:
    """The stock rarity table and reward pool"""
    C, R, E, LG = Rarity.COMMON, Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY
    rewards = {
        C: [
            _reward(RewardType.XP, "Mini XP Boost", "25 bonus XP!", "⭐", 25, C),
            _reward(RewardType.XP, "XP Pack", "50 bonus XP!", "🌟", 50, C),
            _reward(RewardType.BONUS_QUESTIONS, "Extra Questions", "5 bonus question credits!", "📝", 5, C),
        ],
        R: [
            _reward(RewardType.XP, "XP Treasure", "100 bonus XP!", "💫", 100, R),
            _reward(RewardType.DOUBLE_XP, "Double XP", "Double XP for the next 2 hours!", "🚀", 2, R, 2),
            _reward(RewardType.STREAK_FREEZE, "Streak Shield", "Protects your streak for 1 missed day!", "🛡️", 1, R),
            _reward(RewardType.BONUS_QUESTIONS, "Question Pack", "10 bonus question credits!", "📚", 10, R),
        ],
        E: [
            _reward(RewardType.XP, "Mega XP Boost", "200 bonus XP!", "✨", 200, E),
            _reward(RewardType.DOUBLE_XP, "Super Double XP", "Double XP for the next 6 hours!", "💥", 2, E, 6),
            _reward(RewardType.STREAK_FREEZE, "Strong Streak Shield", "Protects your streak for 3 missed days!",
                    "🛡️", 3, E),
            _reward(RewardType.SPECIAL_BADGE, "Lucky Charm", "Special 'Lucky Charm' badge!", "🍀", 1, E),
        ],
        LG: [
            _reward(RewardType.XP, "Legendary XP Chest", "500 bonus XP!", "🏆", 500, LG),
            _reward(RewardType.DOUBLE_XP, "Legendary Double XP", "Double XP for the next 24 hours!", "🎆", 2, LG,
                    24),
            _reward(RewardType.STREAK_FREEZE, "Legendary Streak Shield", "Protects your streak for 7 missed days!",
                    "🛡️", 7, LG),
            _reward(RewardType.SPECIAL_BADGE, "Legendary Explorer", "Ultra rare 'Legendary Explorer' badge!", "🧭",
                    1, LG),
        ],
    }
    return RewardCatalog(DEFAULT_RARITY_WEIGHTS, rewards)
