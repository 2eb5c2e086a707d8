"""
XP, levels and skill progression
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

from levelup.config import load_config
from levelup.models.database import (
    get_cursor, utcnow, fetch_skill, save_skill, write_user_stats, write_task, get_skills
)
from levelup.models.energy import lock_or_create_stats, local_today

logger = logging.getLogger(__name__)


def experience_required_for_level(level: int) -> int:
    """XP needed to go from ``level`` to ``level + 1``."""
    return level * 100 + max(0, level - 1) * 50


def calculate_level(total_experience: int) -> dict:
    """Calculate level and progress from total XP."""
    level = 1
    remaining = max(0, total_experience or 0)

    while remaining >= experience_required_for_level(level):
        remaining -= experience_required_for_level(level)
        level += 1

    needed = experience_required_for_level(level)
    return {
        'level': level,
        'experience': total_experience,
        'experience_in_level': remaining,
        'experience_to_next': needed - remaining,
        'progress': round(remaining / needed * 100, 1)
    }


def experience_for_difficulty(difficulty: str) -> int:
    rewards = load_config()['rewards']
    return rewards.get(difficulty, rewards['medium'])


def add_experience(user_id: str, amount: int) -> Dict[str, Any]:
    """Add (or with a negative amount, remove) XP and recompute the level."""
    with get_cursor() as cur:
        stats = lock_or_create_stats(cur, user_id)
        old_level = stats['level']
        total = max(0, stats['experience'] + amount)
        info = calculate_level(total)

        write_user_stats(cur, user_id, {
            'experience': total,
            'level': info['level'],
            'experience_to_next': info['experience_to_next']
        })

    return {
        'amount': amount,
        'old_level': old_level,
        'new_level': info['level'],
        'level_up': info['level'] > old_level,
        'total_experience': total,
        'experience_to_next': info['experience_to_next']
    }


def recalculate_level(user_id: str) -> Dict[str, Any]:
    """Fix level columns that drifted from the stored experience."""
    with get_cursor() as cur:
        stats = lock_or_create_stats(cur, user_id)
        info = calculate_level(stats['experience'])
        updated = write_user_stats(cur, user_id, {
            'level': info['level'],
            'experience_to_next': info['experience_to_next']
        })

    return {
        'fixed': info['level'] != stats['level'],
        'old_level': stats['level'],
        'new_level': info['level'],
        'stats': updated
    }


def record_task_completion(user_id: str, delta: int = 1) -> int:
    """Adjust the completed-task counter, returns the new count."""
    with get_cursor() as cur:
        stats = lock_or_create_stats(cur, user_id)
        count = max(0, stats['total_tasks_completed'] + delta)
        write_user_stats(cur, user_id, {'total_tasks_completed': count})
    return count


# =============================================================================
# STREAKS
# =============================================================================

STREAK_CATEGORIES = ('habit', 'daily')


def streak_bonus(streak: int) -> int:
    """Extra XP for long habit streaks: 5 per full week beyond the first."""
    return (streak // 7) * 5 if streak > 7 else 0


def next_streak(streak: int, last_date: Optional[date], today: date) -> Tuple[int, date]:
    """Advance a day streak for an activity on ``today``."""
    if last_date == today:
        return streak, today
    if last_date == today - timedelta(days=1):
        return streak + 1, today
    return 1, today


def update_streaks(user_id: str, task: Dict[str, Any], completed: bool,
                   now: datetime = None) -> Dict[str, Any]:
    """Update the user's activity streak and the task's habit streak.

    Days are calendar days in the user's timezone. Completing any task
    extends the user streak; undoing a completion leaves it alone.
    Habits and dailies keep their own streak, which an undo on the same
    day steps back so that completing again counts the day once.
    """
    now = now or utcnow()
    with get_cursor() as cur:
        stats = lock_or_create_stats(cur, user_id)
        today = local_today(stats.get('timezone'), now)
        result = {'streak': stats.get('streak') or 0, 'habit_streak': None, 'streak_bonus': 0}

        if completed:
            last_active = stats.get('last_active_date')
            streak, last_active_new = next_streak(result['streak'], last_active, today)
            if last_active_new != last_active:
                write_user_stats(cur, user_id, {'streak': streak, 'last_active_date': last_active_new})
            result['streak'] = streak

        if task.get('task_category') not in STREAK_CATEGORIES:
            return result

        habit_streak = task.get('habit_streak') or 0
        last_completed = task.get('last_completed_date')
        if completed:
            habit_streak, new_last = next_streak(habit_streak, last_completed, today)
            if new_last != last_completed:
                result['streak_bonus'] = streak_bonus(habit_streak)
        elif last_completed == today:
            habit_streak = max(0, habit_streak - 1)
            new_last = today - timedelta(days=1) if habit_streak else None
        else:
            new_last = last_completed

        write_task(cur, task['id'], user_id, {
            'habit_streak': habit_streak,
            'last_completed_date': new_last
        })
        result['habit_streak'] = habit_streak

    return result


# =============================================================================
# SKILLS
# =============================================================================

def core_skills() -> List[str]:
    return list(load_config()['core_skills'])


def add_skill_experience(user_id: str, skill_name: str, amount: int) -> Dict[str, Any]:
    """Add XP to one of the user's skills, creating it on first use."""
    with get_cursor() as cur:
        skill = fetch_skill(cur, user_id, skill_name)
        old_level = skill['level'] if skill else 1
        total = max(0, (skill['experience'] if skill else 0) + amount)
        level = calculate_level(total)['level']
        saved = save_skill(cur, user_id, skill_name, total, level, exists=skill is not None)

    if level > old_level:
        logger.info(f"Skill {skill_name} of user {user_id} reached level {level}")

    return {
        'name': skill_name,
        'experience': saved['experience'],
        'level': saved['level'],
        'level_up': level > old_level
    }


def get_skill_overview(user_id: str) -> List[Dict[str, Any]]:
    """All core skills of a user, untouched ones at level 1."""
    stored = {skill['name']: skill for skill in get_skills(user_id)}
    overview = []
    for name in core_skills():
        skill = stored.pop(name, None)
        info = calculate_level(skill['experience'] if skill else 0)
        overview.append({'name': name, **info})
    for name, skill in stored.items():
        overview.append({'name': name, **calculate_level(skill['experience'])})
    return overview
