"""
Energy Ball Ledger - per-user consumable daily resource

One energy ball is 15 minutes of focused task time. Each user holds a
balance between 0 and a capacity (default 18 balls), spends it when a
task is completed, gets it back when the completion is undone, and is
refilled to capacity once per calendar day in their own timezone.

All operations are a single transaction against the user's user_stats
row. The row is locked with SELECT ... FOR UPDATE for the
read-modify-write, and created lazily on first access.
"""

import math
import logging
from datetime import date, datetime
from typing import Optional, Dict, Any, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import psycopg2

from levelup.config import DEFAULT_MAX_ENERGY_BALLS, DEFAULT_TIMEZONE, load_config
from levelup.models.database import (
    get_cursor, utcnow, fetch_user_stats, fetch_all_user_stats,
    insert_user_stats, write_user_stats
)

logger = logging.getLogger(__name__)

ENERGY_BALL_MINUTES = 15


class EnergyError(Exception):
    """Base error for energy ledger operations."""


class EnergyStateNotFound(EnergyError):
    """No energy state exists for the user and none could be created."""


class EnergyStorageError(EnergyError):
    """Underlying database read or write failed."""


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"Energy amount must be an integer, got {amount!r}")
    if amount < 0:
        raise ValueError(f"Energy amount must be >= 0, got {amount}")
    return amount


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Resolve a timezone name, falling back to the configured default."""
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz_name!r}, using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def is_reset_due(last_reset: Optional[datetime], now: datetime, tz_name: str = None) -> bool:
    """Check whether a daily reset is due.

    A reset is due when the local calendar date of ``now`` is later than the
    local calendar date of ``last_reset``, both taken in the user's timezone.
    Elapsed time alone never triggers a reset: a reset at 23:58 is followed
    by another one at 00:01, and a reset at 00:01 is not repeated at 23:59.

    Args:
        last_reset: Timestamp of the previous reset (None if never reset)
        now: Current timestamp (timezone-aware)
        tz_name: IANA timezone name of the user

    Returns:
        True if the balance should be refilled
    """
    if last_reset is None:
        return True
    if now < last_reset:
        # Clock moved backwards; last_energy_reset must never move back
        return False

    zone = get_zone(tz_name)
    return now.astimezone(zone).date() > last_reset.astimezone(zone).date()


def local_today(tz_name: Optional[str], now: datetime = None) -> date:
    """Calendar date of ``now`` in the user's timezone."""
    return (now or utcnow()).astimezone(get_zone(tz_name)).date()


def lock_or_create_stats(cur, user_id: str) -> Dict[str, Any]:
    """Fetch and lock the user's row, creating it on first access."""
    state = fetch_user_stats(cur, user_id, for_update=True)
    if state:
        return state

    state = insert_user_stats(
        cur, user_id,
        max_energy_balls=DEFAULT_MAX_ENERGY_BALLS,
        tz_name=DEFAULT_TIMEZONE,
        energy_ball_duration=ENERGY_BALL_MINUTES
    )
    if state:
        logger.info(f"Created energy state for user {user_id}: {state['energy_balls']}/{state['max_energy_balls']}")
        return state

    # Lost the insert race: another request created the row, read it back
    state = fetch_user_stats(cur, user_id, for_update=True)
    if not state:
        raise EnergyStateNotFound(f"No energy state for user {user_id}")
    return state


def _run(operation: str, user_id: str, func):
    """Run a ledger step in one transaction, wrapping storage errors."""
    try:
        with get_cursor() as cur:
            return func(cur)
    except psycopg2.Error as e:
        logger.error(f"Energy {operation} failed for user {user_id}: {e}")
        raise EnergyStorageError(f"Energy {operation} failed for user {user_id}") from e


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def get_or_create(user_id: str) -> Dict[str, Any]:
    """Return the user's energy state, creating a full one if missing.

    Idempotent: a second call never re-initializes the balance.
    """
    return _run('get_or_create', user_id, lambda cur: lock_or_create_stats(cur, user_id))


def consume_with_delta(user_id: str, amount: int) -> Tuple[Dict[str, Any], int]:
    """Spend energy balls, clamping the balance at zero.

    Overdraft is absorbed rather than rejected.

    Returns:
        (updated stats row, balls actually taken off the balance)
    """
    _check_amount(amount)

    def step(cur):
        state = lock_or_create_stats(cur, user_id)
        new_balance = max(0, state['energy_balls'] - amount)
        logger.debug(f"Consume {amount} for user {user_id}: {state['energy_balls']} -> {new_balance}")
        stats = write_user_stats(cur, user_id, {'energy_balls': new_balance})
        return stats, state['energy_balls'] - new_balance

    return _run('consume', user_id, step)


def consume(user_id: str, amount: int) -> Dict[str, Any]:
    return consume_with_delta(user_id, amount)[0]


def restore_with_delta(user_id: str, amount: Optional[int] = None) -> Tuple[Dict[str, Any], int]:
    """Give energy balls back, clamping the balance at capacity.

    Args:
        user_id: User identifier
        amount: Balls to restore; None refills to capacity

    Returns:
        (updated stats row, balls actually added to the balance)
    """
    if amount is not None:
        _check_amount(amount)

    def step(cur):
        state = lock_or_create_stats(cur, user_id)
        capacity = state['max_energy_balls']
        if amount is None:
            new_balance = capacity
        else:
            new_balance = min(capacity, state['energy_balls'] + amount)
        logger.debug(f"Restore {amount} for user {user_id}: {state['energy_balls']} -> {new_balance}")
        stats = write_user_stats(cur, user_id, {'energy_balls': new_balance})
        return stats, max(0, new_balance - state['energy_balls'])

    return _run('restore', user_id, step)


def restore(user_id: str, amount: Optional[int] = None) -> Dict[str, Any]:
    return restore_with_delta(user_id, amount)[0]


def reset_if_new_day(user_id: str, now: datetime = None) -> bool:
    """Refill the balance if the user's calendar day changed since the last reset.

    Returns:
        True if a reset happened
    """
    now = now or utcnow()

    def step(cur):
        state = lock_or_create_stats(cur, user_id)
        if not is_reset_due(state.get('last_energy_reset'), now, state.get('timezone')):
            return False

        write_user_stats(cur, user_id, {
            'energy_balls': state['max_energy_balls'],
            'last_energy_reset': now
        })
        logger.info(f"Energy reset for user {user_id}: {state['energy_balls']} -> {state['max_energy_balls']}")
        return True

    return _run('reset', user_id, step)


def force_reset(user_id: str, now: datetime = None) -> Dict[str, Any]:
    """Refill the balance regardless of the last reset time."""
    now = now or utcnow()

    def step(cur):
        state = lock_or_create_stats(cur, user_id)
        fields = {'energy_balls': state['max_energy_balls']}
        last_reset = state.get('last_energy_reset')
        if last_reset is None or now > last_reset:
            fields['last_energy_reset'] = now
        return write_user_stats(cur, user_id, fields)

    return _run('force_reset', user_id, step)


def set_capacity(user_id: str, max_energy_balls: int) -> Dict[str, Any]:
    """Change the daily capacity, clamping the current balance into range."""
    _check_amount(max_energy_balls)
    if max_energy_balls == 0:
        raise ValueError("Energy capacity must be > 0")

    def step(cur):
        state = lock_or_create_stats(cur, user_id)
        return write_user_stats(cur, user_id, {
            'max_energy_balls': max_energy_balls,
            'energy_balls': min(state['energy_balls'], max_energy_balls)
        })

    return _run('set_capacity', user_id, step)


def set_timezone(user_id: str, tz_name: str) -> Dict[str, Any]:
    """Set the timezone used for the daily reset boundary."""
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ValueError(f"Unknown timezone: {tz_name!r}") from None

    def step(cur):
        lock_or_create_stats(cur, user_id)
        return write_user_stats(cur, user_id, {'timezone': tz_name})

    return _run('set_timezone', user_id, step)


def reset_all_due(now: datetime = None) -> int:
    """Refill every user whose daily reset is due.

    Used by the scheduled sweep; the per-request check stays in place.

    Returns:
        Number of users reset
    """
    now = now or utcnow()

    def step(cur):
        count = 0
        for state in fetch_all_user_stats(cur, for_update=True):
            if is_reset_due(state.get('last_energy_reset'), now, state.get('timezone')):
                write_user_stats(cur, state['user_id'], {
                    'energy_balls': state['max_energy_balls'],
                    'last_energy_reset': now
                })
                count += 1
        return count

    count = _run('sweep', '*', step)
    logger.info(f"Energy reset sweep: {count} users reset")
    return count


# =============================================================================
# TASK COST
# =============================================================================

def required_energy_balls(estimated_duration: int = 25, difficulty: str = 'medium',
                          task_type: str = 'simple') -> int:
    """Energy balls needed for a task.

    One ball per started 15 minutes, scaled by difficulty and task type,
    at least one ball.
    """
    energy_config = load_config()['energy']
    base_balls = math.ceil(max(estimated_duration or 0, 0) / ENERGY_BALL_MINUTES)

    difficulty_multiplier = energy_config['difficulty_multipliers'].get(difficulty, 1.0)
    type_multiplier = energy_config['task_type_multipliers'].get(task_type, 1.0)

    # Halves round up
    return max(1, int(base_balls * difficulty_multiplier * type_multiplier + 0.5))
