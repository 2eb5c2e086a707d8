"""
Web App API Endpoint Tests.
Tests all Flask routes for correct responses.
"""
import pytest
from datetime import datetime, timezone


def _balance(client, headers):
    return client.get('/api/user-stats', headers=headers).get_json()['stats']['energy_balls']


class TestHealthAndMetrics:

    def test_health_check(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy', 'service': 'levelup-web'}

    def test_metrics_exposition(self, client, user_headers):
        client.post('/api/energy/consume', json={'amount': 2}, headers=user_headers)

        response = client.get('/metrics')

        assert response.status_code == 200
        assert b'levelup_energy_balls_consumed_total' in response.data


class TestUserStats:
    """Test /api/user-stats endpoints."""

    def test_first_read_creates_full_balance(self, client, user_headers, mock_db):
        response = client.get('/api/user-stats', headers=user_headers)
        data = response.get_json()

        assert response.status_code == 200
        assert data['energy_restored'] is False
        assert data['stats']['energy_balls'] == 18
        assert data['stats']['max_energy_balls'] == 18
        assert data['stats']['level'] == 1
        assert mock_db['user_stats'][0]['user_id'] == 'alice'

    def test_default_user_without_header(self, client, mock_db):
        client.get('/api/user-stats')

        assert mock_db['user_stats'][0]['user_id'] == 'default'

    def test_read_on_new_day_restores(self, client, user_headers, mock_db):
        client.post('/api/energy/consume', json={'amount': 9}, headers=user_headers)
        mock_db['user_stats'][0]['last_energy_reset'] = datetime(2020, 1, 1, tzinfo=timezone.utc)

        data = client.get('/api/user-stats', headers=user_headers).get_json()

        assert data['energy_restored'] is True
        assert data['stats']['energy_balls'] == 18

    def test_update_capacity_and_timezone(self, client, user_headers):
        response = client.patch('/api/user-stats', headers=user_headers,
                                json={'max_energy_balls': 12, 'timezone': 'Europe/Prague'})
        stats = response.get_json()['stats']

        assert response.status_code == 200
        assert stats['max_energy_balls'] == 12
        assert stats['energy_balls'] == 12
        assert stats['timezone'] == 'Europe/Prague'

    @pytest.mark.parametrize('body', [
        {},
        {'max_energy_balls': 0},
        {'max_energy_balls': 'many'},
        {'timezone': 'Nowhere/Atlantis'},
        {'timezone': 5},
    ])
    def test_update_rejects_invalid(self, client, user_headers, body):
        response = client.patch('/api/user-stats', json=body, headers=user_headers)

        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_restore_energy_full(self, client, user_headers):
        client.post('/api/energy/consume', json={'amount': 10}, headers=user_headers)

        response = client.post('/api/user-stats/restore-energy', headers=user_headers)

        assert response.status_code == 200
        assert response.get_json()['stats']['energy_balls'] == 18

    def test_restore_energy_amount(self, client, user_headers):
        client.post('/api/energy/consume', json={'amount': 10}, headers=user_headers)

        response = client.post('/api/user-stats/restore-energy', json={'amount': 4},
                               headers=user_headers)

        assert response.get_json()['stats']['energy_balls'] == 12

    def test_restore_energy_rejects_negative(self, client, user_headers):
        response = client.post('/api/user-stats/restore-energy', json={'amount': -4},
                               headers=user_headers)

        assert response.status_code == 400

    def test_force_reset(self, client, user_headers):
        client.post('/api/energy/consume', json={'amount': 18}, headers=user_headers)

        response = client.post('/api/user-stats/force-reset-energy', headers=user_headers)

        assert response.status_code == 200
        assert response.get_json()['stats']['energy_balls'] == 18

    def test_recalculate_level(self, client, user_headers, mock_db):
        client.get('/api/user-stats', headers=user_headers)
        mock_db['user_stats'][0]['experience'] = 260

        data = client.post('/api/user-stats/recalculate-level', headers=user_headers).get_json()

        assert data['fixed'] is True
        assert data['new_level'] == 2
        assert data['stats']['level'] == 2


class TestConsumeEndpoint:

    def test_consume_clamps_at_zero(self, client, user_headers):
        client.post('/api/energy/consume', json={'amount': 15}, headers=user_headers)

        response = client.post('/api/energy/consume', json={'amount': 5}, headers=user_headers)
        data = response.get_json()

        assert response.status_code == 200
        assert data['stats']['energy_balls'] == 0
        assert data['consumed'] == 3

    @pytest.mark.parametrize('body', [{}, {'amount': -1}, {'amount': 'two'}, {'amount': True}])
    def test_consume_rejects_invalid(self, client, user_headers, body):
        response = client.post('/api/energy/consume', json=body, headers=user_headers)

        assert response.status_code == 400

    def test_storage_failure_returns_503(self, client, user_headers, mock_db):
        mock_db['fail'] = True

        response = client.post('/api/energy/consume', json={'amount': 1}, headers=user_headers)

        assert response.status_code == 503
        assert response.get_json() == {'error': 'Energy storage unavailable'}

    def test_stats_storage_failure_returns_503(self, client, user_headers, mock_db):
        mock_db['fail'] = True

        response = client.get('/api/user-stats', headers=user_headers)

        assert response.status_code == 503


class TestTasks:
    """Test /api/tasks endpoints."""

    def test_create_derives_cost_and_reward(self, make_task):
        task = make_task(title='Finish the report', estimated_duration=60,
                         difficulty='hard', task_type='main')

        assert task['required_energy_balls'] == 12
        assert task['exp_reward'] == 35
        assert task['completed'] is False

    def test_create_keeps_explicit_values(self, make_task):
        task = make_task(required_energy_balls=3, exp_reward=50)

        assert task['required_energy_balls'] == 3
        assert task['exp_reward'] == 50

    @pytest.mark.parametrize('body', [
        {'title': ''},
        {'title': 'x', 'difficulty': 'legendary'},
        {'title': 'x', 'task_category': 'someday'},
        {'title': 'x', 'estimated_duration': 0},
        {'title': 'x', 'tags': 'one,two'},
        {'title': 42},
        {'title': ['Read']},
        {'title': 'x', 'description': 5},
        {'title': 'x', 'skill_name': {'name': 'Mental Growth'}},
        {'title': 'x', 'goal_id': 999},
    ])
    def test_create_rejects_invalid(self, client, user_headers, body):
        response = client.post('/api/tasks', json=body, headers=user_headers)

        assert response.status_code == 400

    def test_list_tasks_by_category(self, client, user_headers, make_task):
        make_task(title='Meditate', task_category='habit')
        make_task(title='Pay bills')

        all_tasks = client.get('/api/tasks', headers=user_headers).get_json()
        habits = client.get('/api/tasks?category=habit', headers=user_headers).get_json()

        assert len(all_tasks) == 2
        assert [t['title'] for t in habits] == ['Meditate']

    def test_tasks_are_per_user(self, client, make_task):
        make_task()

        assert client.get('/api/tasks', headers={'X-User-ID': 'bob'}).get_json() == []

    def test_update_title(self, client, user_headers, make_task):
        task = make_task()

        response = client.patch(f"/api/tasks/{task['id']}", json={'title': 'Read two chapters'},
                                headers=user_headers)

        assert response.status_code == 200
        assert response.get_json()['task']['title'] == 'Read two chapters'
        assert 'energy' not in response.get_json()

    def test_update_missing_task(self, client, user_headers):
        response = client.patch('/api/tasks/999', json={'completed': True}, headers=user_headers)

        assert response.status_code == 404

    def test_delete_task(self, client, user_headers, make_task, mock_db):
        task = make_task()

        response = client.delete(f"/api/tasks/{task['id']}", headers=user_headers)

        assert response.status_code == 200
        assert mock_db['tasks'] == []
        assert client.delete(f"/api/tasks/{task['id']}", headers=user_headers).status_code == 404


class TestCompletionToggle:
    """Completing a task spends energy, reopening it gives energy back."""

    def test_complete_consumes_energy_and_awards_xp(self, client, user_headers, make_task):
        task = make_task(estimated_duration=45, difficulty='medium', skill_name='Mental Growth')

        response = client.patch(f"/api/tasks/{task['id']}", json={'completed': True},
                                headers=user_headers)
        data = response.get_json()

        assert response.status_code == 200
        assert data['task']['completed'] is True
        assert data['task']['completed_at'] is not None
        assert data['energy']['energy_balls'] == 15
        assert data['xp']['amount'] == 20
        assert data['skill']['experience'] == 20

        stats = client.get('/api/user-stats', headers=user_headers).get_json()['stats']
        assert stats['experience'] == 20
        assert stats['total_tasks_completed'] == 1

    def test_uncomplete_restores_energy(self, client, user_headers, make_task):
        task = make_task(estimated_duration=45, skill_name='Mental Growth')
        client.patch(f"/api/tasks/{task['id']}", json={'completed': True}, headers=user_headers)

        data = client.patch(f"/api/tasks/{task['id']}", json={'completed': False},
                            headers=user_headers).get_json()

        assert data['task']['completed'] is False
        assert data['task']['completed_at'] is None
        assert data['energy']['energy_balls'] == 18
        assert data['skill']['experience'] == 0
        stats = client.get('/api/user-stats', headers=user_headers).get_json()['stats']
        assert stats['total_tasks_completed'] == 0

    def test_repeated_completion_consumes_once(self, client, user_headers, make_task):
        task = make_task(estimated_duration=30)

        client.patch(f"/api/tasks/{task['id']}", json={'completed': True}, headers=user_headers)
        response = client.patch(f"/api/tasks/{task['id']}", json={'completed': True},
                                headers=user_headers)

        assert 'energy' not in response.get_json()
        assert _balance(client, user_headers) == 16

    def test_completion_overdraft_clamps(self, client, user_headers, make_task):
        task = make_task(estimated_duration=120, difficulty='hard', task_type='main')
        client.post('/api/energy/consume', json={'amount': 10}, headers=user_headers)

        data = client.patch(f"/api/tasks/{task['id']}", json={'completed': True},
                            headers=user_headers).get_json()

        assert data['energy']['energy_balls'] == 0

    def test_completion_rejects_non_boolean(self, client, user_headers, make_task):
        task = make_task()

        response = client.patch(f"/api/tasks/{task['id']}", json={'completed': 'yes'},
                                headers=user_headers)

        assert response.status_code == 400

    def test_stale_read_does_not_charge_twice(self, client, user_headers, make_task, monkeypatch):
        """Two requests that both read the task as open only complete it once."""
        import levelup.app as app_module

        task = make_task(estimated_duration=45, exp_reward=20)
        stale = app_module.get_task(task['id'], 'alice')
        client.patch(f"/api/tasks/{task['id']}", json={'completed': True}, headers=user_headers)

        monkeypatch.setattr(app_module, 'get_task', lambda task_id, user_id: dict(stale))
        response = client.patch(f"/api/tasks/{task['id']}", json={'completed': True},
                                headers=user_headers)

        assert response.status_code == 200
        assert 'energy' not in response.get_json()
        assert _balance(client, user_headers) == 15
        stats = client.get('/api/user-stats', headers=user_headers).get_json()['stats']
        assert stats['experience'] == 20
        assert stats['total_tasks_completed'] == 1

    def test_completion_metric_counts_applied_balls(self, client, user_headers, make_task):
        from prometheus_client import REGISTRY

        task = make_task(estimated_duration=120, difficulty='hard', task_type='main')
        client.post('/api/energy/consume', json={'amount': 10}, headers=user_headers)
        before = REGISTRY.get_sample_value('levelup_energy_balls_consumed_total')

        client.patch(f"/api/tasks/{task['id']}", json={'completed': True}, headers=user_headers)

        assert REGISTRY.get_sample_value('levelup_energy_balls_consumed_total') - before == 8

    def test_reward_failure_does_not_fail_request(self, client, user_headers, make_task, monkeypatch):
        import levelup.app as app_module

        def broken(*args, **kwargs):
            raise RuntimeError("xp store down")

        monkeypatch.setattr(app_module, 'add_experience', broken)
        task = make_task(estimated_duration=30)

        response = client.patch(f"/api/tasks/{task['id']}", json={'completed': True},
                                headers=user_headers)

        assert response.status_code == 200
        assert response.get_json()['energy']['energy_balls'] == 16
        assert response.get_json()['xp'] is None

    def test_reset_daily_habits(self, client, user_headers, make_task, mock_db):
        habit = make_task(title='Stretch', task_category='habit', estimated_duration=15)
        todo = make_task(title='File taxes', estimated_duration=15)
        client.patch(f"/api/tasks/{habit['id']}", json={'completed': True}, headers=user_headers)
        client.patch(f"/api/tasks/{todo['id']}", json={'completed': True}, headers=user_headers)
        mock_db['user_stats'][0]['last_energy_reset'] = datetime(2020, 1, 1, tzinfo=timezone.utc)

        data = client.post('/api/tasks/reset-daily-habits', headers=user_headers).get_json()

        assert data == {'habits_reset': 1, 'energy_restored': True}
        tasks = {t['title']: t for t in client.get('/api/tasks', headers=user_headers).get_json()}
        assert tasks['Stretch']['completed'] is False
        assert tasks['File taxes']['completed'] is True
        assert _balance(client, user_headers) == 18


class TestAiEndpoints:

    def test_analyze_task_rules(self, client, user_headers):
        response = client.post('/api/tasks/analyze-task',
                               json={'description': 'meditate every day'}, headers=user_headers)
        data = response.get_json()

        assert response.status_code == 200
        assert data['category'] == 'habit'
        assert data['difficulty'] == 'easy'
        assert data['skill_name'] == 'Emotional Stability'
        assert data['source'] == 'rules'

    def test_analyze_task_requires_description(self, client, user_headers):
        response = client.post('/api/tasks/analyze-task', json={}, headers=user_headers)

        assert response.status_code == 400

    @pytest.mark.parametrize('url', ['/api/tasks/analyze-task', '/api/tasks/intelligent-create'])
    @pytest.mark.parametrize('description', [123, ['write'], {'text': 'write'}, True])
    def test_non_string_description_rejected(self, client, user_headers, mock_db, url, description):
        response = client.post(url, json={'description': description}, headers=user_headers)

        assert response.status_code == 400
        assert 'description' in response.get_json()['error']
        assert mock_db['tasks'] == []

    def test_intelligent_create(self, client, user_headers, mock_db):
        response = client.post('/api/tasks/intelligent-create',
                               json={'description': 'read the python book chapter'},
                               headers=user_headers)
        data = response.get_json()

        assert response.status_code == 201
        assert data['task']['difficulty'] == 'medium'
        assert data['task']['required_energy_balls'] == 2
        assert data['task']['estimated_duration'] == 30
        assert data['task']['skill_name'] == 'Mental Growth'
        assert len(mock_db['tasks']) == 1

    def test_cache_status(self, client, user_headers):
        client.post('/api/tasks/analyze-task', json={'description': 'call a friend'},
                    headers=user_headers)
        client.post('/api/tasks/analyze-task', json={'description': 'Call a friend'},
                    headers=user_headers)

        data = client.get('/api/ai/cache-status').get_json()

        assert data['ai_enabled'] is False
        assert data['cache']['hits'] == 1
        assert data['cache']['misses'] == 1
        assert data['cache']['entries'] == 1


class TestRecommendations:

    def test_recommendations_use_energy_balance(self, client, user_headers, make_task):
        make_task(title='Quick stretch', difficulty='easy', estimated_duration=10)
        make_task(title='Big refactor', difficulty='hard', estimated_duration=45)
        client.post('/api/energy/consume', json={'amount': 16}, headers=user_headers)

        data = client.post('/api/recommendations', json={'available_time': 60},
                           headers=user_headers).get_json()

        assert data['energy_level'] == 'low'
        assert [r['title'] for r in data['recommendations']] == ['Quick stretch']

    def test_explicit_energy_level(self, client, user_headers, make_task):
        make_task(title='Big refactor', difficulty='hard', estimated_duration=45)

        data = client.post('/api/recommendations', json={'energy_level': 'high'},
                           headers=user_headers).get_json()

        assert data['recommendations'][0]['title'] == 'Big refactor'
        assert data['recommendations'][0]['type'] == 'milestone'

    def test_warmup_when_nothing_fits(self, client, user_headers):
        data = client.post('/api/recommendations', json={}, headers=user_headers).get_json()

        assert len(data['recommendations']) == 2
        assert all(r['type'] == 'warmup' for r in data['recommendations'])

    def test_invalid_state(self, client, user_headers):
        response = client.post('/api/recommendations', json={'mood': 'ecstatic'},
                               headers=user_headers)

        assert response.status_code == 400


class TestSkillsEndpoint:

    def test_skills_overview(self, client, user_headers, make_task):
        task = make_task(skill_name='Physical Mastery', difficulty='hard')
        client.patch(f"/api/tasks/{task['id']}", json={'completed': True}, headers=user_headers)

        skills = {s['name']: s for s in client.get('/api/skills', headers=user_headers).get_json()}

        assert len(skills) == 6
        assert skills['Physical Mastery']['experience'] == 35


class TestStreaks:

    @pytest.mark.freeze_time('2025-03-10 08:00:00')
    def test_habit_streak_over_consecutive_days(self, client, user_headers, make_task, freezer):
        habit = make_task(title='Stretch', task_category='habit', estimated_duration=15)
        url = f"/api/tasks/{habit['id']}"

        first = client.patch(url, json={'completed': True}, headers=user_headers).get_json()
        assert first['streak'] == {'streak': 1, 'habit_streak': 1, 'streak_bonus': 0}

        freezer.move_to('2025-03-11 08:00:00')
        client.post('/api/tasks/reset-daily-habits', headers=user_headers)
        second = client.patch(url, json={'completed': True}, headers=user_headers).get_json()

        assert second['task']['habit_streak'] == 2
        assert second['task']['last_completed_date'] == '2025-03-11'
        assert second['streak']['streak'] == 2

    @pytest.mark.freeze_time('2025-03-10 08:00:00')
    def test_missed_day_restarts_streak(self, client, user_headers, make_task, freezer):
        habit = make_task(title='Stretch', task_category='habit', estimated_duration=15)
        url = f"/api/tasks/{habit['id']}"
        client.patch(url, json={'completed': True}, headers=user_headers)

        freezer.move_to('2025-03-12 08:00:00')
        client.post('/api/tasks/reset-daily-habits', headers=user_headers)
        data = client.patch(url, json={'completed': True}, headers=user_headers).get_json()

        assert data['task']['habit_streak'] == 1

    @pytest.mark.freeze_time('2025-03-10 08:00:00')
    def test_undo_same_day_does_not_double_count(self, client, user_headers, make_task):
        habit = make_task(title='Stretch', task_category='habit', estimated_duration=15)
        url = f"/api/tasks/{habit['id']}"

        client.patch(url, json={'completed': True}, headers=user_headers)
        undone = client.patch(url, json={'completed': False}, headers=user_headers).get_json()
        redone = client.patch(url, json={'completed': True}, headers=user_headers).get_json()

        assert undone['task']['habit_streak'] == 0
        assert undone['task']['last_completed_date'] is None
        assert redone['task']['habit_streak'] == 1

    def test_week_long_streak_earns_bonus_xp(self, client, user_headers, make_task, mock_db):
        from datetime import date, timedelta

        habit = make_task(title='Stretch', task_category='habit', exp_reward=10)
        row = [t for t in mock_db['tasks'] if t['id'] == habit['id']][0]
        row['habit_streak'] = 7
        row['last_completed_date'] = datetime.now(timezone.utc).date() - timedelta(days=1)

        data = client.patch(f"/api/tasks/{habit['id']}", json={'completed': True},
                            headers=user_headers).get_json()

        assert data['task']['habit_streak'] == 8
        assert data['streak']['streak_bonus'] == 5
        assert data['xp']['amount'] == 15

    def test_todo_has_no_habit_streak(self, client, user_headers, make_task):
        task = make_task()

        data = client.patch(f"/api/tasks/{task['id']}", json={'completed': True},
                            headers=user_headers).get_json()

        assert data['streak']['habit_streak'] is None
        assert data['streak']['streak'] == 1


class TestBattleReport:

    @pytest.mark.freeze_time('2025-03-10 08:00:00')
    def test_daily_report_tracks_energy_and_tasks(self, client, user_headers, make_task):
        task = make_task(estimated_duration=45)
        client.patch(f"/api/tasks/{task['id']}", json={'completed': True}, headers=user_headers)
        client.post('/api/energy/consume', json={'amount': 2}, headers=user_headers)

        report = client.get('/api/battle-report', headers=user_headers).get_json()

        assert report['report_date'] == '2025-03-10'
        assert report['energy_consumed'] == 5
        assert report['tasks_completed'] == 1
        assert report['focus_minutes'] == 75

    @pytest.mark.freeze_time('2025-03-10 08:00:00')
    def test_uncomplete_takes_task_back(self, client, user_headers, make_task):
        task = make_task(estimated_duration=45)
        url = f"/api/tasks/{task['id']}"
        client.patch(url, json={'completed': True}, headers=user_headers)
        client.patch(url, json={'completed': False}, headers=user_headers)

        report = client.get('/api/battle-report', headers=user_headers).get_json()

        assert report['energy_consumed'] == 0
        assert report['tasks_completed'] == 0

    def test_report_of_empty_day(self, client, user_headers):
        report = client.get('/api/battle-report?date=2024-01-01', headers=user_headers).get_json()

        assert report['report_date'] == '2024-01-01'
        assert report['energy_consumed'] == 0

    @pytest.mark.freeze_time('2025-03-10 08:00:00')
    def test_summary_over_days(self, client, user_headers, freezer):
        client.post('/api/energy/consume', json={'amount': 4}, headers=user_headers)
        freezer.move_to('2025-03-12 08:00:00')
        client.post('/api/energy/consume', json={'amount': 2}, headers=user_headers)

        summary = client.get('/api/battle-report/summary?days=7', headers=user_headers).get_json()

        assert summary['start_date'] == '2025-03-06'
        assert summary['end_date'] == '2025-03-12'
        assert summary['active_days'] == 2
        assert summary['total_energy_consumed'] == 6
        assert summary['average_energy_consumed'] == 3
        assert [r['report_date'] for r in summary['daily_reports']] == ['2025-03-12', '2025-03-10']

    @pytest.mark.parametrize('query', ['date=yesterday', 'date=2025-13-01'])
    def test_invalid_date(self, client, user_headers, query):
        assert client.get(f'/api/battle-report?{query}', headers=user_headers).status_code == 400

    @pytest.mark.parametrize('days', ['0', '-1', 'week', '400'])
    def test_invalid_summary_window(self, client, user_headers, days):
        response = client.get(f'/api/battle-report/summary?days={days}', headers=user_headers)

        assert response.status_code == 400


class TestGoals:

    def test_create_and_list(self, client, user_headers):
        response = client.post('/api/goals', json={'title': 'Run a marathon',
                                                    'target_date': '2025-10-01'},
                               headers=user_headers)

        assert response.status_code == 201
        goal = response.get_json()
        assert goal['exp_reward'] == 50
        assert goal['target_date'] == '2025-10-01'
        assert [g['title'] for g in client.get('/api/goals', headers=user_headers).get_json()] == \
            ['Run a marathon']
        assert client.get('/api/goals', headers={'X-User-ID': 'bob'}).get_json() == []

    @pytest.mark.parametrize('body', [
        {}, {'title': ' '}, {'title': 7}, {'title': 'x', 'target_date': 'soon'},
        {'title': 'x', 'exp_reward': -5},
    ])
    def test_create_rejects_invalid(self, client, user_headers, body):
        assert client.post('/api/goals', json=body, headers=user_headers).status_code == 400

    def test_progress_update(self, client, user_headers):
        goal = client.post('/api/goals', json={'title': 'Learn Czech'}, headers=user_headers).get_json()

        data = client.patch(f"/api/goals/{goal['id']}", json={'progress': 0.4},
                            headers=user_headers).get_json()

        assert data['goal']['progress'] == 0.4
        for progress in (1.5, -0.1, 'half', True):
            response = client.patch(f"/api/goals/{goal['id']}", json={'progress': progress},
                                    headers=user_headers)
            assert response.status_code == 400

    def test_completion_awards_xp_once(self, client, user_headers):
        goal = client.post('/api/goals', json={'title': 'Ship v1', 'exp_reward': 120},
                           headers=user_headers).get_json()
        url = f"/api/goals/{goal['id']}"

        first = client.patch(url, json={'completed': True}, headers=user_headers).get_json()
        second = client.patch(url, json={'completed': True}, headers=user_headers).get_json()

        assert first['goal']['completed'] is True
        assert first['goal']['progress'] == 1.0
        assert first['xp']['level_up'] is True
        assert second['xp'] is None
        stats = client.get('/api/user-stats', headers=user_headers).get_json()['stats']
        assert stats['experience'] == 120

    def test_tasks_link_to_goal(self, client, user_headers, make_task, mock_db):
        goal = client.post('/api/goals', json={'title': 'Get fit'}, headers=user_headers).get_json()
        task = make_task(goal_id=goal['id'])

        assert task['goal_id'] == goal['id']

        client.delete(f"/api/goals/{goal['id']}", headers=user_headers)

        assert mock_db['goals'] == []
        assert mock_db['tasks'][0]['goal_id'] is None

    def test_missing_goal(self, client, user_headers):
        assert client.patch('/api/goals/9', json={'title': 'x'}, headers=user_headers).status_code == 404
        assert client.delete('/api/goals/9', headers=user_headers).status_code == 404

    def test_other_users_goal_not_linkable(self, client, user_headers):
        goal = client.post('/api/goals', json={'title': 'Mine'},
                           headers={'X-User-ID': 'bob'}).get_json()

        response = client.post('/api/tasks', json={'title': 'x', 'goal_id': goal['id']},
                               headers=user_headers)

        assert response.status_code == 400
