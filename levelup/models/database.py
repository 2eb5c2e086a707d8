"""
PostgreSQL Database Connection and Operations
User stats, tasks and skills storage for Level Up Solo
"""

import logging
from datetime import datetime, date, timezone
from contextlib import contextmanager
from typing import Optional, List, Dict, Any

from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from levelup.config import DATABASE_URL

logger = logging.getLogger(__name__)

_pool = None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_stats (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(255) NOT NULL UNIQUE,
    level INTEGER NOT NULL DEFAULT 1,
    experience INTEGER NOT NULL DEFAULT 0,
    experience_to_next INTEGER NOT NULL DEFAULT 100,
    energy_balls INTEGER NOT NULL DEFAULT 18 CHECK (energy_balls >= 0),
    max_energy_balls INTEGER NOT NULL DEFAULT 18 CHECK (max_energy_balls > 0),
    energy_ball_duration INTEGER NOT NULL DEFAULT 15,
    timezone VARCHAR(64) NOT NULL DEFAULT 'UTC',
    streak INTEGER NOT NULL DEFAULT 0,
    last_active_date DATE,
    total_tasks_completed INTEGER NOT NULL DEFAULT 0,
    last_energy_reset TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT energy_within_capacity CHECK (energy_balls <= max_energy_balls)
);

CREATE TABLE IF NOT EXISTS tasks (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(255) NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    completed BOOLEAN NOT NULL DEFAULT FALSE,
    task_category VARCHAR(16) NOT NULL DEFAULT 'todo',
    task_type VARCHAR(16) NOT NULL DEFAULT 'simple',
    difficulty VARCHAR(16) NOT NULL DEFAULT 'medium',
    exp_reward INTEGER NOT NULL DEFAULT 0,
    estimated_duration INTEGER DEFAULT 25,
    required_energy_balls INTEGER NOT NULL DEFAULT 1,
    skill_name VARCHAR(64),
    tags TEXT[] DEFAULT '{}',
    goal_id INTEGER,
    habit_streak INTEGER NOT NULL DEFAULT 0,
    last_completed_date DATE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks (user_id, task_category);

CREATE TABLE IF NOT EXISTS skills (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(255) NOT NULL,
    name VARCHAR(64) NOT NULL,
    experience INTEGER NOT NULL DEFAULT 0,
    level INTEGER NOT NULL DEFAULT 1,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, name)
);

CREATE TABLE IF NOT EXISTS battle_reports (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(255) NOT NULL,
    report_date DATE NOT NULL,
    energy_consumed INTEGER NOT NULL DEFAULT 0,
    tasks_completed INTEGER NOT NULL DEFAULT 0,
    focus_minutes INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, report_date)
);

CREATE TABLE IF NOT EXISTS goals (
    id SERIAL PRIMARY KEY,
    user_id VARCHAR(255) NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    completed BOOLEAN NOT NULL DEFAULT FALSE,
    progress REAL NOT NULL DEFAULT 0 CHECK (progress >= 0 AND progress <= 1),
    target_date DATE,
    exp_reward INTEGER NOT NULL DEFAULT 50,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_goals_user ON goals (user_id);
"""

USER_STATS_COLUMNS = """id, user_id, level, experience, experience_to_next,
                   energy_balls, max_energy_balls, energy_ball_duration, timezone,
                   streak, last_active_date, total_tasks_completed, last_energy_reset,
                   created_at, updated_at"""

TASK_COLUMNS = """id, user_id, title, description, completed, task_category,
                   task_type, difficulty, exp_reward, estimated_duration,
                   required_energy_balls, skill_name, tags, goal_id, habit_streak,
                   last_completed_date, created_at, completed_at"""

GOAL_COLUMNS = """id, user_id, title, description, completed, progress, target_date,
                   exp_reward, created_at, completed_at"""

REPORT_COLUMNS = """user_id, report_date, energy_consumed, tasks_completed,
                   focus_minutes, updated_at"""

# Columns that update helpers are allowed to write
USER_STATS_FIELDS = {
    'level', 'experience', 'experience_to_next', 'energy_balls',
    'max_energy_balls', 'energy_ball_duration', 'timezone', 'streak',
    'last_active_date', 'total_tasks_completed', 'last_energy_reset'
}
TASK_FIELDS = {
    'title', 'description', 'task_category', 'task_type',
    'difficulty', 'exp_reward', 'estimated_duration', 'required_energy_balls',
    'skill_name', 'tags', 'goal_id', 'habit_streak', 'last_completed_date'
}
GOAL_FIELDS = {'title', 'description', 'progress', 'target_date', 'exp_reward'}


def get_pool():
    """Get or create connection pool."""
    global _pool
    if _pool is None:
        _pool = pool.ThreadedConnectionPool(
            minconn=2,
            maxconn=10,
            dsn=DATABASE_URL
        )
    return _pool


def init_db():
    """Initialize PostgreSQL connection and create schema."""
    try:
        with get_cursor() as cur:
            cur.execute("SELECT 1")
            cur.execute(SCHEMA_SQL)
        logger.info("PostgreSQL connected, schema ready")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


@contextmanager
def get_cursor(cursor_factory=RealDictCursor):
    """Context manager for database cursor, one transaction per block."""
    conn = get_pool().getconn()
    try:
        cur = conn.cursor(cursor_factory=cursor_factory)
        try:
            yield cur
            conn.commit()
        finally:
            cur.close()
    except Exception:
        conn.rollback()
        raise
    finally:
        get_pool().putconn(conn)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert a row to a JSON-friendly dict."""
    if row is None:
        return None
    result = dict(row)
    for key, value in result.items():
        if isinstance(value, (datetime, date)):
            result[key] = value.isoformat()
    return result


def _build_update(table: str, fields: Dict[str, Any], allowed: set, where: List[str],
                  touch: bool = True) -> tuple:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update {table} columns: {sorted(unknown)}")

    assignments = [f"{column} = %s" for column in fields]
    params = list(fields.values())
    if touch:
        assignments.append("updated_at = %s")
        params.append(utcnow())

    query = f"UPDATE {table} SET {', '.join(assignments)} WHERE {' AND '.join(c + ' = %s' for c in where)} RETURNING *"
    return query, params


# =============================================================================
# USER STATS
# =============================================================================

def fetch_user_stats(cur, user_id: str, for_update: bool = False) -> Optional[Dict[str, Any]]:
    """Read a user_stats row using an open cursor."""
    query = f"SELECT {USER_STATS_COLUMNS} FROM user_stats WHERE user_id = %s"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (user_id,))
    row = cur.fetchone()
    return dict(row) if row else None


def fetch_all_user_stats(cur, for_update: bool = False) -> List[Dict[str, Any]]:
    query = f"SELECT {USER_STATS_COLUMNS} FROM user_stats ORDER BY user_id"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query)
    return [dict(row) for row in cur.fetchall()]


def insert_user_stats(cur, user_id: str, max_energy_balls: int, tz_name: str,
                      energy_ball_duration: int = 15) -> Optional[Dict[str, Any]]:
    """Insert a fresh user_stats row with a full energy balance.

    Returns None when another transaction created the row first.
    """
    now = utcnow()
    cur.execute("""
        INSERT INTO user_stats
        (user_id, energy_balls, max_energy_balls, energy_ball_duration,
         timezone, last_energy_reset, created_at, updated_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (user_id) DO NOTHING
        RETURNING *
    """, (user_id, max_energy_balls, max_energy_balls, energy_ball_duration,
          tz_name, now, now, now))
    row = cur.fetchone()
    return dict(row) if row else None


def write_user_stats(cur, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Update user_stats columns using an open cursor."""
    query, params = _build_update('user_stats', fields, USER_STATS_FIELDS, ['user_id'])
    cur.execute(query, (*params, user_id))
    row = cur.fetchone()
    return dict(row) if row else None


# =============================================================================
# TASKS
# =============================================================================

def create_task(user_id: str, title: str, description: str = None,
                task_category: str = 'todo', task_type: str = 'simple',
                difficulty: str = 'medium', exp_reward: int = 0,
                estimated_duration: int = 25, required_energy_balls: int = 1,
                skill_name: str = None, tags: List[str] = None,
                goal_id: int = None) -> Dict[str, Any]:
    """Insert a new task."""
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO tasks
            (user_id, title, description, completed, task_category, task_type,
             difficulty, exp_reward, estimated_duration, required_energy_balls,
             skill_name, tags, goal_id, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (
            user_id, title[:200], description[:1000] if description else None,
            False, task_category, task_type, difficulty, exp_reward,
            estimated_duration, required_energy_balls, skill_name,
            list(tags or []), goal_id, utcnow()
        ))
        return dict(cur.fetchone())


def get_task(task_id: int, user_id: str) -> Optional[Dict[str, Any]]:
    """Get a single task owned by the user."""
    with get_cursor() as cur:
        cur.execute(f"""
            SELECT {TASK_COLUMNS}
            FROM tasks
            WHERE id = %s AND user_id = %s
        """, (task_id, user_id))
        row = cur.fetchone()
    return dict(row) if row else None


def get_tasks(user_id: str, category: str = None) -> List[Dict[str, Any]]:
    """List tasks of a user, newest first."""
    with get_cursor() as cur:
        if category:
            cur.execute(f"""
                SELECT {TASK_COLUMNS}
                FROM tasks
                WHERE user_id = %s AND task_category = %s
                ORDER BY created_at DESC
            """, (user_id, category))
        else:
            cur.execute(f"""
                SELECT {TASK_COLUMNS}
                FROM tasks
                WHERE user_id = %s
                ORDER BY created_at DESC
            """, (user_id,))
        return [dict(row) for row in cur.fetchall()]


def update_task(task_id: int, user_id: str, **fields) -> Optional[Dict[str, Any]]:
    """Update task columns, returns the updated row or None."""
    if not fields:
        return get_task(task_id, user_id)
    with get_cursor() as cur:
        return write_task(cur, task_id, user_id, fields)


def set_task_completion(task_id: int, user_id: str, completed: bool) -> Optional[Dict[str, Any]]:
    """Flip the completed flag only if it currently has the opposite value.

    Returns the updated row, or None when the task is missing or already
    in the requested state. Concurrent toggles to the same value therefore
    see exactly one row back.
    """
    with get_cursor() as cur:
        cur.execute("""
            UPDATE tasks SET completed = %s, completed_at = %s
            WHERE id = %s AND user_id = %s AND completed = %s
            RETURNING *
        """, (completed, utcnow() if completed else None, task_id, user_id, not completed))
        row = cur.fetchone()
    return dict(row) if row else None


def write_task(cur, task_id: int, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Update task columns using an open cursor."""
    query, params = _build_update('tasks', fields, TASK_FIELDS, ['id', 'user_id'], touch=False)
    cur.execute(query, (*params, task_id, user_id))
    row = cur.fetchone()
    return dict(row) if row else None


def delete_task(task_id: int, user_id: str) -> bool:
    """Delete a task, returns whether a row was removed."""
    with get_cursor() as cur:
        cur.execute("DELETE FROM tasks WHERE id = %s AND user_id = %s", (task_id, user_id))
        return cur.rowcount > 0


def uncomplete_habits(user_id: str) -> int:
    """Mark all completed habits of a user as open again."""
    with get_cursor() as cur:
        cur.execute("""
            UPDATE tasks SET completed = %s, completed_at = %s
            WHERE user_id = %s AND task_category = %s AND completed = %s
            RETURNING *
        """, (False, None, user_id, 'habit', True))
        return len(cur.fetchall())


# =============================================================================
# SKILLS
# =============================================================================

def get_skills(user_id: str) -> List[Dict[str, Any]]:
    """Get all skills of a user."""
    with get_cursor() as cur:
        cur.execute("""
            SELECT name, experience, level, updated_at
            FROM skills
            WHERE user_id = %s
            ORDER BY experience DESC
        """, (user_id,))
        return [dict(row) for row in cur.fetchall()]


def fetch_skill(cur, user_id: str, name: str) -> Optional[Dict[str, Any]]:
    cur.execute("""
        SELECT name, experience, level, updated_at
        FROM skills
        WHERE user_id = %s AND name = %s
        FOR UPDATE
    """, (user_id, name))
    row = cur.fetchone()
    return dict(row) if row else None


def save_skill(cur, user_id: str, name: str, experience: int, level: int,
               exists: bool) -> Dict[str, Any]:
    """Insert or update a skill row using an open cursor."""
    if exists:
        cur.execute("""
            UPDATE skills SET experience = %s, level = %s, updated_at = %s
            WHERE user_id = %s AND name = %s
            RETURNING *
        """, (experience, level, utcnow(), user_id, name))
    else:
        cur.execute("""
            INSERT INTO skills (user_id, name, experience, level, updated_at)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
        """, (user_id, name, experience, level, utcnow()))
    return dict(cur.fetchone())


# =============================================================================
# GOALS
# =============================================================================

def create_goal(user_id: str, title: str, description: str = None,
                target_date: date = None, exp_reward: int = 50) -> Dict[str, Any]:
    """Insert a new goal."""
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO goals
            (user_id, title, description, completed, progress, target_date,
             exp_reward, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (user_id, title[:200], description[:1000] if description else None,
              False, 0.0, target_date, exp_reward, utcnow()))
        return dict(cur.fetchone())


def get_goals(user_id: str) -> List[Dict[str, Any]]:
    """List goals of a user, newest first."""
    with get_cursor() as cur:
        cur.execute(f"""
            SELECT {GOAL_COLUMNS}
            FROM goals
            WHERE user_id = %s
            ORDER BY created_at DESC
        """, (user_id,))
        return [dict(row) for row in cur.fetchall()]


def get_goal(goal_id: int, user_id: str) -> Optional[Dict[str, Any]]:
    with get_cursor() as cur:
        cur.execute(f"""
            SELECT {GOAL_COLUMNS}
            FROM goals
            WHERE id = %s AND user_id = %s
        """, (goal_id, user_id))
        row = cur.fetchone()
    return dict(row) if row else None


def update_goal(goal_id: int, user_id: str, **fields) -> Optional[Dict[str, Any]]:
    """Update goal columns, returns the updated row or None."""
    if not fields:
        return get_goal(goal_id, user_id)
    query, params = _build_update('goals', fields, GOAL_FIELDS, ['id', 'user_id'], touch=False)
    with get_cursor() as cur:
        cur.execute(query, (*params, goal_id, user_id))
        row = cur.fetchone()
    return dict(row) if row else None


def set_goal_completion(goal_id: int, user_id: str, completed: bool) -> Optional[Dict[str, Any]]:
    """Flip the goal's completed flag only if it has the opposite value."""
    with get_cursor() as cur:
        cur.execute("""
            UPDATE goals SET completed = %s, completed_at = %s, progress = %s
            WHERE id = %s AND user_id = %s AND completed = %s
            RETURNING *
        """, (completed, utcnow() if completed else None, 1.0 if completed else 0.0,
              goal_id, user_id, not completed))
        row = cur.fetchone()
    return dict(row) if row else None


def delete_goal(goal_id: int, user_id: str) -> bool:
    """Delete a goal and detach its tasks."""
    with get_cursor() as cur:
        cur.execute("""
            UPDATE tasks SET goal_id = %s
            WHERE goal_id = %s AND user_id = %s
            RETURNING *
        """, (None, goal_id, user_id))
        cur.execute("DELETE FROM goals WHERE id = %s AND user_id = %s", (goal_id, user_id))
        return cur.rowcount > 0


# =============================================================================
# BATTLE REPORTS
# =============================================================================

def fetch_battle_report(cur, user_id: str, report_date: date,
                        for_update: bool = False) -> Optional[Dict[str, Any]]:
    query = f"SELECT {REPORT_COLUMNS} FROM battle_reports WHERE user_id = %s AND report_date = %s"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (user_id, report_date))
    row = cur.fetchone()
    return dict(row) if row else None


def save_battle_report(cur, user_id: str, report_date: date, energy_consumed: int,
                       tasks_completed: int, focus_minutes: int,
                       exists: bool) -> Dict[str, Any]:
    """Insert or update one day's report using an open cursor."""
    if exists:
        cur.execute("""
            UPDATE battle_reports
            SET energy_consumed = %s, tasks_completed = %s, focus_minutes = %s, updated_at = %s
            WHERE user_id = %s AND report_date = %s
            RETURNING *
        """, (energy_consumed, tasks_completed, focus_minutes, utcnow(), user_id, report_date))
    else:
        cur.execute("""
            INSERT INTO battle_reports
            (user_id, report_date, energy_consumed, tasks_completed, focus_minutes, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (user_id, report_date, energy_consumed, tasks_completed, focus_minutes, utcnow()))
    return dict(cur.fetchone())


def get_battle_reports(user_id: str) -> List[Dict[str, Any]]:
    """All daily reports of a user, most recent day first."""
    with get_cursor() as cur:
        cur.execute(f"""
            SELECT {REPORT_COLUMNS}
            FROM battle_reports
            WHERE user_id = %s
            ORDER BY report_date DESC
        """, (user_id,))
        return [dict(row) for row in cur.fetchall()]
