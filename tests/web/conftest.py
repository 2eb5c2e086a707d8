"""
Web App specific pytest fixtures.
Provides Flask app and test client with mocked PostgreSQL.
"""
import pytest

from levelup.services import TTLCache, TaskClassifier


@pytest.fixture
def classifier(monkeypatch):
    """Rule-based classifier with a fresh cache."""
    monkeypatch.delenv('AI_API_KEY', raising=False)
    return TaskClassifier(cache=TTLCache(maxsize=16, ttl_seconds=60))


@pytest.fixture
def app(mock_db, classifier, monkeypatch):
    """Create Flask app with mocked PostgreSQL."""
    import levelup.app as app_module

    monkeypatch.setattr(app_module, 'classifier', classifier)

    flask_app = app_module.app
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    """Create test client for HTTP requests."""
    return app.test_client()


@pytest.fixture
def user_headers():
    return {'X-User-ID': 'alice'}


@pytest.fixture
def make_task(client, user_headers):
    """Create a task through the API and return its JSON."""
    def _make(**fields):
        body = {'title': 'Read a chapter', 'estimated_duration': 30, 'difficulty': 'medium'}
        body.update(fields)
        response = client.post('/api/tasks', json=body, headers=user_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()
    return _make
