"""
Level Up Solo - Flask Web Application
Gamified task tracker: tasks and habits, XP and skill levels,
and a daily budget of energy balls spent on completed tasks.
"""

import psycopg2
from datetime import date

from flask import Flask, jsonify, request, Response, session
from flask_cors import CORS
from flask_socketio import SocketIO, emit, join_room
from prometheus_flask_exporter import PrometheusMetrics
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from levelup import __version__
from levelup.config import (
    SECRET_KEY, DATABASE_URL, DEFAULT_USER_ID, ENERGY_RESET_SWEEP, load_config
)

# Structured logging for Loki
from levelup.utils.logger import logger
from levelup.utils.metrics import (
    app_info, ENERGY_CONSUMED, ENERGY_RESTORED, ENERGY_RESETS, ENERGY_ERRORS,
    TASKS_COMPLETED, TASKS_UNCOMPLETED, ACTIVE_CLIENTS
)

from levelup.models.database import (
    init_db, serialize_row,
    create_task, get_task, get_tasks, update_task, set_task_completion, delete_task,
    uncomplete_habits, create_goal, get_goal, get_goals, update_goal, set_goal_completion,
    delete_goal
)
from levelup.models.energy import (
    EnergyError, EnergyStateNotFound, EnergyStorageError, ENERGY_BALL_MINUTES,
    get_or_create, consume_with_delta, restore_with_delta, reset_if_new_day, force_reset,
    set_capacity, set_timezone, required_energy_balls
)
from levelup.models.progression import (
    calculate_level, experience_for_difficulty, add_experience, recalculate_level,
    record_task_completion, update_streaks, add_skill_experience, get_skill_overview
)
from levelup.models.battle_report import record_battle, get_daily_report, get_summary
from levelup.models.pydantic_models import UserState
from levelup.services import TaskClassifier, recommend_tasks
from levelup.services.recommender import energy_level_from_balance

app = Flask(__name__)
app.config['SECRET_KEY'] = SECRET_KEY
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")

# =============================================================================
# PROMETHEUS METRICS
# =============================================================================
metrics = PrometheusMetrics(app, path=None)  # Disable automatic /metrics endpoint

app_info.info({
    'version': __version__,
    'service': 'levelup-web'
})


@app.route('/metrics')
def prometheus_metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)


@app.route('/health')
@metrics.do_not_track()
def health_check():
    """Health check endpoint for monitoring"""
    return jsonify({'status': 'healthy', 'service': 'levelup-web'})


classifier = TaskClassifier()


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def current_user_id() -> str:
    """User id set by the upstream identity layer."""
    return (request.headers.get('X-User-ID') or '').strip() or DEFAULT_USER_ID


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("JSON object expected")
    return data


def _int_field(data: dict, key: str, default=None, minimum: int = 0):
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}")
    return value


def _str_field(data: dict, key: str, required: bool = False):
    value = data.get(key)
    if value is None:
        value = ''
    elif not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    value = value.strip()
    if required and not value:
        raise ValueError(f"{key} is required")
    return value or None


def _choice_field(data: dict, key: str, choices: list, default: str) -> str:
    value = data.get(key) or default
    if value not in choices:
        raise ValueError(f"{key} must be one of {', '.join(choices)}")
    return value


def energy_payload(user_id: str, stats: dict) -> dict:
    return {
        'user_id': user_id,
        'energy_balls': stats['energy_balls'],
        'max_energy_balls': stats['max_energy_balls'],
        'energy_ball_duration': stats['energy_ball_duration'],
        'last_energy_reset': serialize_row(stats)['last_energy_reset']
    }


def broadcast_energy(user_id: str, stats: dict):
    """Push the new balance to the user's own sockets."""
    socketio.emit('energy_update', energy_payload(user_id, stats), to=user_id)


def stats_response(stats: dict) -> dict:
    result = serialize_row(stats)
    info = calculate_level(stats['experience'])
    result['experience_in_level'] = info['experience_in_level']
    result['progress'] = info['progress']
    return result


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.errorhandler(ValueError)
def handle_value_error(e):
    logger.api_error(request.path, type(e).__name__, str(e), 400)
    return jsonify({'error': str(e)}), 400


@app.errorhandler(EnergyStateNotFound)
def handle_state_not_found(e):
    logger.api_error(request.path, 'EnergyStateNotFound', str(e), 404)
    return jsonify({'error': str(e)}), 404


@app.errorhandler(EnergyStorageError)
def handle_storage_error(e):
    logger.api_error(request.path, 'EnergyStorageError', str(e), 503)
    return jsonify({'error': 'Energy storage unavailable'}), 503


@app.errorhandler(psycopg2.Error)
def handle_database_error(e):
    logger.api_error(request.path, type(e).__name__, str(e), 503)
    return jsonify({'error': 'Database unavailable'}), 503


# =============================================================================
# USER STATS & ENERGY
# =============================================================================

@app.route('/api/user-stats', methods=['GET'])
def api_get_user_stats():
    """Stats of the current user, refilling energy on a new day"""
    user_id = current_user_id()
    restored = reset_if_new_day(user_id)
    stats = get_or_create(user_id)

    if restored:
        ENERGY_RESETS.labels(trigger='daily').inc()
        logger.energy_reset(user_id, 'daily', stats['max_energy_balls'])
        broadcast_energy(user_id, stats)

    return jsonify({'stats': stats_response(stats), 'energy_restored': restored})


@app.route('/api/user-stats', methods=['PATCH'])
def api_update_user_stats():
    """Change energy capacity and/or timezone"""
    user_id = current_user_id()
    data = get_json_body()

    # Validate everything before writing anything
    capacity = _int_field(data, 'max_energy_balls', minimum=1)
    tz_name = data.get('timezone')
    if tz_name is not None and not isinstance(tz_name, str):
        raise ValueError("timezone must be a string")
    if capacity is None and tz_name is None:
        raise ValueError("Nothing to update: send max_energy_balls or timezone")

    stats = None
    if tz_name is not None:
        stats = set_timezone(user_id, tz_name)
    if capacity is not None:
        stats = set_capacity(user_id, capacity)
        broadcast_energy(user_id, stats)

    return jsonify({'stats': stats_response(stats)})


@app.route('/api/user-stats/restore-energy', methods=['POST'])
def api_restore_energy():
    """Give energy balls back, full refill without an amount"""
    user_id = current_user_id()
    amount = _int_field(get_json_body(), 'amount')

    stats, restored = restore_with_delta(user_id, amount)
    ENERGY_RESTORED.labels(reason='manual').inc(restored)
    logger.energy_changed(user_id, 'restore', amount, stats['energy_balls'], stats['max_energy_balls'])
    broadcast_energy(user_id, stats)

    return jsonify({'stats': stats_response(stats)})


@app.route('/api/user-stats/force-reset-energy', methods=['POST'])
def api_force_reset_energy():
    user_id = current_user_id()
    stats = force_reset(user_id)
    ENERGY_RESETS.labels(trigger='forced').inc()
    logger.energy_reset(user_id, 'forced', stats['max_energy_balls'])
    broadcast_energy(user_id, stats)
    return jsonify({'stats': stats_response(stats)})


@app.route('/api/user-stats/recalculate-level', methods=['POST'])
def api_recalculate_level():
    result = recalculate_level(current_user_id())
    return jsonify({
        'fixed': result['fixed'],
        'old_level': result['old_level'],
        'new_level': result['new_level'],
        'stats': stats_response(result['stats'])
    })


@app.route('/api/energy/consume', methods=['POST'])
def api_consume_energy():
    """Spend energy balls directly (clamped at zero)"""
    user_id = current_user_id()
    amount = _int_field(get_json_body(), 'amount')
    if amount is None:
        raise ValueError("amount is required")

    stats, consumed = consume_with_delta(user_id, amount)
    ENERGY_CONSUMED.inc(consumed)
    track_battle(user_id, energy=consumed, minutes=consumed * ENERGY_BALL_MINUTES)
    logger.energy_changed(user_id, 'consume', amount, stats['energy_balls'], stats['max_energy_balls'])
    broadcast_energy(user_id, stats)

    return jsonify({
        'stats': stats_response(stats),
        'consumed': consumed
    })


# =============================================================================
# TASKS
# =============================================================================

def _task_fields(user_id: str, data: dict, existing: dict = None) -> dict:
    """Validate task fields from a request body."""
    config = load_config()
    existing = existing or {}
    fields = {}

    if 'title' in data or not existing:
        title = _str_field(data, 'title')
        if not title:
            raise ValueError("Task title is required")
        fields['title'] = title[:200]
    if 'description' in data:
        fields['description'] = _str_field(data, 'description')
    if 'task_category' in data or not existing:
        fields['task_category'] = _choice_field(data, 'task_category', config['task_categories'], 'todo')
    if 'task_type' in data or not existing:
        fields['task_type'] = _choice_field(data, 'task_type', config['task_types'], 'simple')
    if 'difficulty' in data or not existing:
        fields['difficulty'] = _choice_field(data, 'difficulty', config['difficulties'], 'medium')
    if 'estimated_duration' in data or not existing:
        fields['estimated_duration'] = _int_field(data, 'estimated_duration', default=25, minimum=1)
    if 'required_energy_balls' in data:
        fields['required_energy_balls'] = _int_field(data, 'required_energy_balls')
    if 'exp_reward' in data:
        fields['exp_reward'] = _int_field(data, 'exp_reward')
    if 'skill_name' in data:
        fields['skill_name'] = _str_field(data, 'skill_name')
    if 'tags' in data:
        tags = data.get('tags') or []
        if not isinstance(tags, list):
            raise ValueError("tags must be a list")
        fields['tags'] = [str(t) for t in tags]
    if 'goal_id' in data:
        goal_id = _int_field(data, 'goal_id', minimum=1)
        if goal_id is not None and get_goal(goal_id, user_id) is None:
            raise ValueError(f"Unknown goal: {goal_id}")
        fields['goal_id'] = goal_id

    return fields


def track_battle(user_id: str, **deltas):
    """Add to today's battle report; a failure here never undoes the ledger write."""
    try:
        return record_battle(user_id, **deltas)
    except psycopg2.Error as e:
        ENERGY_ERRORS.labels(operation='battle_report').inc()
        logger.error("REPORT_ERROR", f"Battle report update failed for user {user_id}", exception=e)
        return None


@app.route('/api/tasks', methods=['GET'])
def api_list_tasks():
    tasks = get_tasks(current_user_id(), category=request.args.get('category'))
    return jsonify([serialize_row(t) for t in tasks])


@app.route('/api/tasks', methods=['POST'])
def api_create_task():
    """Create a task, deriving energy cost and XP from its size"""
    user_id = current_user_id()
    fields = _task_fields(user_id, get_json_body())

    if fields.get('required_energy_balls') is None:
        fields['required_energy_balls'] = required_energy_balls(
            fields['estimated_duration'], fields['difficulty'], fields['task_type']
        )
    if fields.get('exp_reward') is None:
        fields['exp_reward'] = experience_for_difficulty(fields['difficulty'])

    task = create_task(user_id, **fields)
    return jsonify(serialize_row(task)), 201


def _apply_completion(user_id: str, task: dict, completed: bool) -> dict:
    """Energy and reward bookkeeping for a completion toggle.

    Only called for the request whose conditional update flipped the
    flag. Failures are logged and reported in the result; the task
    update itself has already been saved.
    """
    balls = task.get('required_energy_balls') or 0
    result = {'energy': None, 'xp': None, 'skill': None, 'streak': None}
    applied = 0

    try:
        if completed:
            stats, applied = consume_with_delta(user_id, balls)
            ENERGY_CONSUMED.inc(applied)
        else:
            stats, applied = restore_with_delta(user_id, balls)
            ENERGY_RESTORED.labels(reason='uncomplete').inc(applied)
        logger.energy_changed(user_id, 'consume' if completed else 'restore', balls,
                              stats['energy_balls'], stats['max_energy_balls'], task_id=task['id'])
        broadcast_energy(user_id, stats)
        result['energy'] = energy_payload(user_id, stats)
    except (EnergyError, ValueError) as e:
        ENERGY_ERRORS.labels(operation='consume' if completed else 'restore').inc()
        logger.error("ENERGY_ERROR", f"Energy update failed for task {task['id']}", exception=e)

    sign = 1 if completed else -1
    track_battle(user_id, energy=sign * applied, tasks=sign,
                 minutes=sign * (task.get('estimated_duration') or 0))

    try:
        streaks = update_streaks(user_id, task, completed)
        result['streak'] = streaks
        xp = task.get('exp_reward') or experience_for_difficulty(task.get('difficulty'))
        if completed:
            xp_result = add_experience(user_id, xp + streaks['streak_bonus'])
            result['xp'] = xp_result
            if xp_result['level_up']:
                logger.level_up(user_id, xp_result['old_level'], xp_result['new_level'],
                                xp_result['total_experience'])
                emit_level_up(user_id, xp_result)
        record_task_completion(user_id, sign)
        if task.get('skill_name'):
            result['skill'] = add_skill_experience(user_id, task['skill_name'], sign * xp)
    except Exception as e:
        ENERGY_ERRORS.labels(operation='rewards').inc()
        logger.error("REWARD_ERROR", f"Reward bookkeeping failed for task {task['id']}", exception=e)

    if completed:
        TASKS_COMPLETED.labels(category=task['task_category'], difficulty=task['difficulty']).inc()
    else:
        TASKS_UNCOMPLETED.labels(category=task['task_category']).inc()
    logger.task_completed(user_id, task['id'], task['task_category'], task['difficulty'],
                          completed, balls, xp_earned=(result['xp'] or {}).get('amount', 0))
    return result


def emit_level_up(user_id: str, xp_result: dict):
    socketio.emit('level_up', {
        'user_id': user_id,
        'old_level': xp_result['old_level'],
        'new_level': xp_result['new_level']
    }, to=user_id)


@app.route('/api/tasks/<int:task_id>', methods=['PATCH'])
def api_update_task(task_id):
    """Update a task; toggling completion spends or returns energy"""
    user_id = current_user_id()
    task = get_task(task_id, user_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    data = get_json_body()
    fields = _task_fields(user_id, data, existing=task)
    completed = data.get('completed')
    if 'completed' in data and not isinstance(completed, bool):
        raise ValueError("completed must be a boolean")

    updated = update_task(task_id, user_id, **fields)
    if updated is None:
        return jsonify({'error': 'Task not found'}), 404

    toggled = None
    if completed is not None:
        # Only the request that actually flips the flag gets a row back
        toggled = set_task_completion(task_id, user_id, completed)
        if toggled is not None:
            updated = toggled

    response = {'task': serialize_row(updated)}
    if toggled is not None:
        response.update(_apply_completion(user_id, toggled, completed))
        response['task'] = serialize_row(get_task(task_id, user_id) or toggled)
    return jsonify(response)


@app.route('/api/tasks/<int:task_id>', methods=['DELETE'])
def api_delete_task(task_id):
    if not delete_task(task_id, current_user_id()):
        return jsonify({'error': 'Task not found'}), 404
    return jsonify({'status': 'ok', 'deleted': task_id})


@app.route('/api/tasks/reset-daily-habits', methods=['POST'])
def api_reset_daily_habits():
    """Reopen completed habits and run the daily energy check"""
    user_id = current_user_id()
    reopened = uncomplete_habits(user_id)
    restored = reset_if_new_day(user_id)

    if restored:
        stats = get_or_create(user_id)
        ENERGY_RESETS.labels(trigger='daily').inc()
        logger.energy_reset(user_id, 'daily', stats['max_energy_balls'])
        broadcast_energy(user_id, stats)

    logger.info("HABITS_RESET", f"Reopened {reopened} habits", {"user_id": user_id},
                {"reopened": reopened, "energy_restored": restored})
    return jsonify({'habits_reset': reopened, 'energy_restored': restored})


# =============================================================================
# AI CLASSIFICATION & RECOMMENDATIONS
# =============================================================================

@app.route('/api/tasks/analyze-task', methods=['POST'])
def api_analyze_task():
    """Classify a free-text task without creating it"""
    result = classifier.classify(get_json_body().get('description'))
    return jsonify(result.model_dump(mode='json'))


@app.route('/api/tasks/intelligent-create', methods=['POST'])
def api_intelligent_create():
    """Classify a free-text task and create it"""
    user_id = current_user_id()
    data = get_json_body()
    description = _str_field(data, 'description', required=True)
    analysis = classifier.classify(description)

    duration = _int_field(data, 'estimated_duration', minimum=1) or analysis.energy_balls * ENERGY_BALL_MINUTES
    difficulty = analysis.difficulty.value
    task = create_task(
        user_id,
        title=analysis.title,
        description=description,
        task_category=analysis.category.value,
        difficulty=difficulty,
        exp_reward=experience_for_difficulty(difficulty),
        estimated_duration=duration,
        required_energy_balls=analysis.energy_balls,
        skill_name=analysis.skill_name
    )

    return jsonify({
        'task': serialize_row(task),
        'analysis': analysis.model_dump(mode='json')
    }), 201


@app.route('/api/recommendations', methods=['POST'])
def api_recommendations():
    """Recommend open tasks for the user's current state"""
    user_id = current_user_id()
    state = UserState.model_validate(get_json_body())
    stats = get_or_create(user_id)

    if state.energy_level is None:
        state = state.model_copy(update={
            'energy_level': energy_level_from_balance(stats['energy_balls'], stats['max_energy_balls'])
        })

    limit = request.args.get('limit', 3, type=int)
    recommendations = recommend_tasks(state, get_tasks(user_id), limit=max(1, limit),
                                      energy_balance=stats['energy_balls'])

    return jsonify({
        'energy_level': state.energy_level.value,
        'energy_balls': stats['energy_balls'],
        'recommendations': [r.model_dump(mode='json') for r in recommendations]
    })


@app.route('/api/skills')
def api_skills():
    return jsonify(get_skill_overview(current_user_id()))


@app.route('/api/ai/cache-status')
def api_cache_status():
    return jsonify({
        'ai_enabled': classifier.enabled,
        'model': classifier.model,
        'cache': classifier.cache.stats()
    })


# =============================================================================
# GOALS
# =============================================================================

def _date_field(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be an ISO date string")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{key} must be an ISO date (YYYY-MM-DD)") from None


def _goal_fields(data: dict, creating: bool = False) -> dict:
    fields = {}
    if 'title' in data or creating:
        title = _str_field(data, 'title')
        if not title:
            raise ValueError("Goal title is required")
        fields['title'] = title[:200]
    if 'description' in data:
        fields['description'] = _str_field(data, 'description')
    if 'target_date' in data:
        fields['target_date'] = _date_field(data, 'target_date')
    if 'exp_reward' in data:
        fields['exp_reward'] = _int_field(data, 'exp_reward', default=50)
    if 'progress' in data:
        progress = data['progress']
        if isinstance(progress, bool) or not isinstance(progress, (int, float)) or not 0 <= progress <= 1:
            raise ValueError("progress must be a number between 0 and 1")
        fields['progress'] = float(progress)
    return fields


@app.route('/api/goals', methods=['GET'])
def api_list_goals():
    return jsonify([serialize_row(g) for g in get_goals(current_user_id())])


@app.route('/api/goals', methods=['POST'])
def api_create_goal():
    user_id = current_user_id()
    fields = _goal_fields(get_json_body(), creating=True)
    fields.pop('progress', None)
    if fields.get('exp_reward') is None:
        fields.pop('exp_reward', None)
    goal = create_goal(user_id, **fields)
    return jsonify(serialize_row(goal)), 201


@app.route('/api/goals/<int:goal_id>', methods=['PATCH'])
def api_update_goal(goal_id):
    """Update a goal; completing it awards its XP once"""
    user_id = current_user_id()
    data = get_json_body()
    fields = _goal_fields(data)
    completed = data.get('completed')
    if 'completed' in data and not isinstance(completed, bool):
        raise ValueError("completed must be a boolean")

    goal = update_goal(goal_id, user_id, **fields)
    if goal is None:
        return jsonify({'error': 'Goal not found'}), 404

    response = {'goal': serialize_row(goal), 'xp': None}
    if completed is not None:
        toggled = set_goal_completion(goal_id, user_id, completed)
        if toggled is not None:
            response['goal'] = serialize_row(toggled)
            if completed:
                xp_result = add_experience(user_id, toggled['exp_reward'])
                response['xp'] = xp_result
                if xp_result['level_up']:
                    logger.level_up(user_id, xp_result['old_level'], xp_result['new_level'],
                                    xp_result['total_experience'])
                    emit_level_up(user_id, xp_result)
            logger.info("GOAL_COMPLETED" if completed else "GOAL_REOPENED", f"Goal {goal_id}",
                        {"user_id": user_id}, {"goal_id": goal_id, "exp_reward": toggled['exp_reward']})
    return jsonify(response)


@app.route('/api/goals/<int:goal_id>', methods=['DELETE'])
def api_delete_goal(goal_id):
    if not delete_goal(goal_id, current_user_id()):
        return jsonify({'error': 'Goal not found'}), 404
    return jsonify({'status': 'ok', 'deleted': goal_id})


# =============================================================================
# BATTLE REPORTS
# =============================================================================

@app.route('/api/battle-report', methods=['GET'])
def api_battle_report():
    """Energy spent and tasks finished on one day (default today)"""
    report_date = _date_field(request.args, 'date')
    return jsonify(serialize_row(get_daily_report(current_user_id(), report_date)))


@app.route('/api/battle-report/summary', methods=['GET'])
def api_battle_report_summary():
    days = request.args.get('days', '7')
    if not days.isdigit():
        raise ValueError("days must be a positive integer")
    return jsonify(get_summary(current_user_id(), int(days)))


# =============================================================================
# WEBSOCKET EVENTS
# =============================================================================

def socket_user_id(auth=None) -> str:
    """Identity of a connecting socket: X-User-ID header, then auth payload."""
    user_id = (request.headers.get('X-User-ID') or '').strip()
    if not user_id and isinstance(auth, dict) and isinstance(auth.get('user_id'), str):
        user_id = auth['user_id'].strip()
    return user_id or DEFAULT_USER_ID


@socketio.on('connect')
def handle_connect(auth=None):
    """Client connected; joins the room of its own user"""
    user_id = socket_user_id(auth)
    session['user_id'] = user_id
    join_room(user_id)
    ACTIVE_CLIENTS.inc()
    logger.websocket_event('connect', user_id=user_id)
    emit('connected', {'status': 'connected', 'user_id': user_id})


@socketio.on('disconnect')
def handle_disconnect(reason=None):
    """Client disconnected"""
    ACTIVE_CLIENTS.dec()
    logger.websocket_event('disconnect')


@socketio.on('request_stats')
def handle_request_stats(data=None):
    """Send the connected user's current stats; the payload is ignored"""
    user_id = session.get('user_id', DEFAULT_USER_ID)
    restored = reset_if_new_day(user_id)
    stats = get_or_create(user_id)
    emit('stats_update', {'stats': stats_response(stats), 'energy_restored': restored})


if __name__ == '__main__':
    import os

    if init_db():
        logger.info("STARTUP", "Database connected", {"db_type": "PostgreSQL"})
    else:
        logger.warning("STARTUP", "Database connection failed")

    if ENERGY_RESET_SWEEP:
        from levelup.utils.scheduler import start_scheduler
        start_scheduler(DATABASE_URL)

    debug_mode = os.getenv('FLASK_ENV') == 'development' and os.getenv('FLASK_DEBUG', '0') == '1'
    socketio.run(app, host='0.0.0.0', port=int(os.getenv('PORT', '5000')),
                 debug=debug_mode, allow_unsafe_werkzeug=True)
