"""
Shared pytest fixtures for Level Up Solo tests.
Provides an in-memory PostgreSQL stand-in and sample task data.
"""
import re
import pytest
from datetime import datetime, timezone

import psycopg2


TABLE_DEFAULTS = {
    'user_stats': {
        'level': 1,
        'experience': 0,
        'experience_to_next': 100,
        'energy_balls': 18,
        'max_energy_balls': 18,
        'energy_ball_duration': 15,
        'timezone': 'UTC',
        'streak': 0,
        'last_active_date': None,
        'total_tasks_completed': 0,
        'last_energy_reset': None,
    },
    'tasks': {
        'description': None,
        'completed': False,
        'task_category': 'todo',
        'task_type': 'simple',
        'difficulty': 'medium',
        'exp_reward': 0,
        'estimated_duration': 25,
        'required_energy_balls': 1,
        'skill_name': None,
        'tags': [],
        'goal_id': None,
        'habit_streak': 0,
        'last_completed_date': None,
        'completed_at': None,
    },
    'skills': {
        'experience': 0,
        'level': 1,
    },
    'battle_reports': {
        'energy_consumed': 0,
        'tasks_completed': 0,
        'focus_minutes': 0,
    },
    'goals': {
        'description': None,
        'completed': False,
        'progress': 0.0,
        'target_date': None,
        'exp_reward': 50,
        'completed_at': None,
    },
}

INSERT_RE = re.compile(
    r"insert into (\w+) \((.*?)\) values \((.*?)\)"
    r"(?: on conflict \((\w+)\) do nothing)?(?: returning \*)?$"
)
SELECT_RE = re.compile(
    r"select (.*?) from (\w+)(?: where (.*?))?"
    r"(?: order by (\w+)(?: (asc|desc))?)?( for update)?$"
)
UPDATE_RE = re.compile(r"update (\w+) set (.*?) where (.*?)(?: returning \*)?$")
DELETE_RE = re.compile(r"delete from (\w+) where (.*)$")


class MockCursor:
    """Mock PostgreSQL cursor with RealDictCursor behavior.

    Interprets the single-table INSERT / SELECT / UPDATE / DELETE
    statements the application issues, with ``col = %s`` conditions.
    """

    def __init__(self, data_store):
        self.data_store = data_store
        self._results = []
        self._index = 0
        self.rowcount = 0
        self.queries = data_store.setdefault('queries', [])

    def execute(self, query, params=None):
        """Run a statement against the in-memory tables."""
        if self.data_store.get('fail'):
            raise psycopg2.OperationalError("connection to server was lost")

        sql = ' '.join(query.split())
        self.queries.append(sql)
        params = list(params or [])
        lowered = sql.lower()
        self._results = []
        self._index = 0
        self.rowcount = 0

        if lowered.startswith('create') or lowered == 'select 1':
            self._results = [{'?column?': 1}]
            return

        for pattern, handler in (
            (INSERT_RE, self._insert),
            (SELECT_RE, self._select),
            (UPDATE_RE, self._update),
            (DELETE_RE, self._delete),
        ):
            match = pattern.match(lowered)
            if match:
                handler(match, params)
                return

        raise AssertionError(f"MockCursor cannot interpret: {sql}")

    # -------------------------------------------------------------------------

    def _table(self, name):
        return self.data_store.setdefault(name, [])

    @staticmethod
    def _conditions(clause):
        return [part.split('=')[0].strip() for part in clause.split(' and ')]

    def _matching(self, table, clause, params):
        rows = self._table(table)
        if not clause:
            return list(rows)
        columns = self._conditions(clause)
        values = params[:len(columns)]
        return [r for r in rows if all(r.get(c) == v for c, v in zip(columns, values))]

    def _insert(self, match, params):
        table, columns, _, conflict = match.groups()
        columns = [c.strip() for c in columns.split(',')]
        row = dict(TABLE_DEFAULTS.get(table, {}))
        row.update(zip(columns, params))

        rows = self._table(table)
        if conflict and any(r.get(conflict) == row[conflict] for r in rows):
            return

        now = datetime.now(timezone.utc)
        row.setdefault('created_at', now)
        if table == 'user_stats':
            row.setdefault('updated_at', now)
        self.data_store['next_id'] = self.data_store.get('next_id', 0) + 1
        row['id'] = self.data_store['next_id']
        rows.append(row)
        self._results = [dict(row)]
        self.rowcount = 1

    def _select(self, match, params):
        _, table, clause, order_by, direction, _ = match.groups()
        rows = self._matching(table, clause, params)
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)),
                      reverse=direction == 'desc')
        self._results = [dict(r) for r in rows]
        self.rowcount = len(rows)

    def _update(self, match, params):
        table, assignments, clause = match.groups()
        columns = [a.split('=')[0].strip() for a in assignments.split(',')]
        values = params[:len(columns)]
        rows = self._matching(table, clause, params[len(columns):])
        for row in rows:
            row.update(zip(columns, values))
        self._results = [dict(r) for r in rows]
        self.rowcount = len(rows)

    def _delete(self, match, params):
        table, clause = match.groups()
        doomed = self._matching(table, clause, params)
        self.data_store[table] = [r for r in self._table(table) if r not in doomed]
        self.rowcount = len(doomed)

    # -------------------------------------------------------------------------

    def fetchone(self):
        """Fetch one result."""
        if self._results and self._index < len(self._results):
            result = self._results[self._index]
            self._index += 1
            return result
        return None

    def fetchall(self):
        """Fetch all results."""
        return self._results

    def close(self):
        """Close cursor."""
        pass


class MockConnection:
    """Mock PostgreSQL connection."""

    def __init__(self, data_store):
        self.data_store = data_store

    def cursor(self, cursor_factory=None):
        return MockCursor(self.data_store)

    def commit(self):
        self.data_store['commits'] = self.data_store.get('commits', 0) + 1

    def rollback(self):
        self.data_store['rollbacks'] = self.data_store.get('rollbacks', 0) + 1


class MockPool:
    """Mock PostgreSQL connection pool."""

    def __init__(self, data_store):
        self.data_store = data_store

    def getconn(self):
        return MockConnection(self.data_store)

    def putconn(self, conn):
        pass


@pytest.fixture
def mock_db_data():
    """Shared data store for mock database."""
    return {
        'user_stats': [],
        'tasks': [],
        'skills': [],
        'battle_reports': [],
        'goals': [],
    }


@pytest.fixture
def mock_pool(mock_db_data):
    """Create mock PostgreSQL pool."""
    return MockPool(mock_db_data)


@pytest.fixture
def mock_db(mock_db_data, mock_pool, monkeypatch):
    """Route every database call to the in-memory pool."""
    import levelup.models.database as db_module

    monkeypatch.setattr(db_module, '_pool', mock_pool)
    monkeypatch.setattr(db_module, 'get_pool', lambda: mock_pool)

    return mock_db_data


@pytest.fixture
def failing_db(mock_db):
    """Database whose every statement raises OperationalError."""
    mock_db['fail'] = True
    return mock_db


@pytest.fixture
def sample_tasks():
    """Open and completed tasks covering all difficulties."""
    return [
        {'id': 1, 'title': 'Morning run', 'difficulty': 'easy', 'task_type': 'daily',
         'task_category': 'habit', 'estimated_duration': 20, 'required_energy_balls': 1,
         'completed': False},
        {'id': 2, 'title': 'Write quarterly report', 'difficulty': 'hard', 'task_type': 'main',
         'task_category': 'todo', 'estimated_duration': 90, 'required_energy_balls': 12,
         'completed': False},
        {'id': 3, 'title': 'Review budget', 'difficulty': 'medium', 'task_type': 'simple',
         'task_category': 'todo', 'estimated_duration': 30, 'required_energy_balls': 2,
         'completed': False},
        {'id': 4, 'title': 'Call mom', 'difficulty': 'easy', 'task_type': 'simple',
         'task_category': 'todo', 'estimated_duration': 15, 'required_energy_balls': 1,
         'completed': True},
    ]
