"""
Database queries - re-exported so callers can use
'from progress_engine.db.queries import apply_xp'.

Module organization:
- progress.py: user totals, XP ledger, streak state
- achievements.py: achievement definitions and unlocks
- rewards.py: reward boxes, temporary effects, credits
- goals.py: daily goals and custom goals
"""

# Progress operations
from progress_engine.db.queries.progress import (
    get_or_create_progress,
    apply_xp,
    compare_and_set_streak,
    append_ledger_entry,
    get_ledger_entries,
    count_ledger_entries,
    sum_ledger_xp,
    sum_ledger_questions,
    count_active_days,
)

# Achievement operations
from progress_engine.db.queries.achievements import (
    upsert_achievement_definition,
    get_achievement_definition,
    insert_achievement_unlock,
    get_achievement_unlocks,
)

# Reward operations
from progress_engine.db.queries.rewards import (
    insert_reward_box,
    get_reward_box,
    mark_box_opened,
    list_reward_boxes,
    upsert_effect,
    list_active_effects,
    consume_effect_charge,
    add_credits,
    get_credits,
)

# Goal operations
from progress_engine.db.queries.goals import (
    insert_daily_goal_if_absent,
    get_daily_goal,
    increment_daily_goal,
    update_daily_goal_targets,
    set_daily_goal_approval_required,
    approve_daily_goal,
    revoke_daily_goal_approval,
    list_daily_goals,
    insert_user_goal,
    get_user_goal,
    increment_user_goal,
    set_user_goal_approval,
    deactivate_user_goal,
    list_user_goals,
)

__all__ = [
    # Progress (9 functions)
    "get_or_create_progress",
    "apply_xp",
    "compare_and_set_streak",
    "append_ledger_entry",
    "get_ledger_entries",
    "count_ledger_entries",
    "sum_ledger_xp",
    "sum_ledger_questions",
    "count_active_days",

    # Achievements (4 functions)
    "upsert_achievement_definition",
    "get_achievement_definition",
    "insert_achievement_unlock",
    "get_achievement_unlocks",

    # Rewards (9 functions)
    "insert_reward_box",
    "get_reward_box",
    "mark_box_opened",
    "list_reward_boxes",
    "upsert_effect",
    "list_active_effects",
    "consume_effect_charge",
    "add_credits",
    "get_credits",

    # Goals (14 functions)
    "insert_daily_goal_if_absent",
    "get_daily_goal",
    "increment_daily_goal",
    "update_daily_goal_targets",
    "set_daily_goal_approval_required",
    "approve_daily_goal",
    "revoke_daily_goal_approval",
    "list_daily_goals",
    "insert_user_goal",
    "get_user_goal",
    "increment_user_goal",
    "set_user_goal_approval",
    "deactivate_user_goal",
    "list_user_goals",
]
