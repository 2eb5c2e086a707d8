"""
Daily battle report - energy spent and tasks finished per calendar day

One row per user and local day. Rows are written inside the same
transaction that locks the user's user_stats row, so updates for one
user never race on the (user_id, report_date) key.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, Any

from levelup.models.database import (
    get_cursor, utcnow, serialize_row, fetch_battle_report, save_battle_report,
    get_battle_reports
)
from levelup.models.energy import lock_or_create_stats, local_today, get_or_create

logger = logging.getLogger(__name__)

MAX_SUMMARY_DAYS = 366


def empty_report(user_id: str, report_date: date) -> Dict[str, Any]:
    return {
        'user_id': user_id,
        'report_date': report_date,
        'energy_consumed': 0,
        'tasks_completed': 0,
        'focus_minutes': 0,
        'updated_at': None
    }


def record_battle(user_id: str, energy: int = 0, tasks: int = 0, minutes: int = 0,
                  now: datetime = None) -> Dict[str, Any]:
    """Add signed deltas to today's report, never going below zero."""
    now = now or utcnow()
    with get_cursor() as cur:
        stats = lock_or_create_stats(cur, user_id)
        today = local_today(stats.get('timezone'), now)
        report = fetch_battle_report(cur, user_id, today, for_update=True)
        current = report or empty_report(user_id, today)

        saved = save_battle_report(
            cur, user_id, today,
            energy_consumed=max(0, current['energy_consumed'] + energy),
            tasks_completed=max(0, current['tasks_completed'] + tasks),
            focus_minutes=max(0, current['focus_minutes'] + minutes),
            exists=report is not None
        )

    logger.debug(f"Battle report {today} for user {user_id}: {saved['energy_consumed']} balls, "
                 f"{saved['tasks_completed']} tasks")
    return saved


def get_daily_report(user_id: str, report_date: date = None) -> Dict[str, Any]:
    """Report of one day (today in the user's timezone by default)."""
    if report_date is None:
        report_date = local_today(get_or_create(user_id).get('timezone'))
    with get_cursor() as cur:
        report = fetch_battle_report(cur, user_id, report_date)
    return report or empty_report(user_id, report_date)


def get_summary(user_id: str, days: int = 7, now: datetime = None) -> Dict[str, Any]:
    """Totals and per-active-day averages over the last ``days`` local days.

    Args:
        user_id: User identifier
        days: Window length, today included
        now: Current timestamp (timezone-aware)

    Returns:
        Summary dict with the daily reports of the window, newest first
    """
    if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_SUMMARY_DAYS:
        raise ValueError(f"days must be between 1 and {MAX_SUMMARY_DAYS}")

    end = local_today(get_or_create(user_id).get('timezone'), now)
    start = end - timedelta(days=days - 1)
    reports = [r for r in get_battle_reports(user_id) if start <= r['report_date'] <= end]

    total_energy = sum(r['energy_consumed'] for r in reports)
    total_tasks = sum(r['tasks_completed'] for r in reports)
    total_minutes = sum(r['focus_minutes'] for r in reports)
    active_days = len(reports)

    return {
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
        'active_days': active_days,
        'total_energy_consumed': total_energy,
        'total_tasks_completed': total_tasks,
        'total_focus_minutes': total_minutes,
        'average_energy_consumed': round(total_energy / active_days) if active_days else 0,
        'average_focus_minutes': round(total_minutes / active_days) if active_days else 0,
        'daily_reports': [serialize_row(r) for r in reports]
    }
