"""
Prometheus metrics for Level Up Solo
"""

from prometheus_client import Counter, Histogram, Gauge, Info

app_info = Info('levelup_web', 'Level Up Solo Web Application Information')

# Energy ledger
ENERGY_CONSUMED = Counter(
    'levelup_energy_balls_consumed_total',
    'Energy balls spent on task completion'
)

ENERGY_RESTORED = Counter(
    'levelup_energy_balls_restored_total',
    'Energy balls given back',
    ['reason']
)

ENERGY_RESETS = Counter(
    'levelup_energy_resets_total',
    'Daily energy resets performed',
    ['trigger']
)

ENERGY_ERRORS = Counter(
    'levelup_energy_errors_total',
    'Energy bookkeeping failures',
    ['operation']
)

# Tasks
TASKS_COMPLETED = Counter(
    'levelup_tasks_completed_total',
    'Tasks marked completed',
    ['category', 'difficulty']
)

TASKS_UNCOMPLETED = Counter(
    'levelup_tasks_uncompleted_total',
    'Task completions undone',
    ['category']
)

# AI classification
AI_REQUESTS = Counter(
    'levelup_ai_requests_total',
    'Task classification requests',
    ['source']
)

AI_REQUEST_DURATION = Histogram(
    'levelup_ai_request_duration_seconds',
    'Duration of LLM classification calls',
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0]
)

AI_ERRORS = Counter(
    'levelup_ai_errors_total',
    'LLM classification errors',
    ['error_type']
)

AI_TOKENS = Counter(
    'levelup_ai_tokens_total',
    'LLM tokens used',
    ['direction']
)

CACHE_HITS = Counter(
    'levelup_cache_hits_total',
    'Classification cache hits'
)

CACHE_MISSES = Counter(
    'levelup_cache_misses_total',
    'Classification cache misses'
)

ACTIVE_CLIENTS = Gauge(
    'levelup_active_clients',
    'Number of active WebSocket connections'
)


def record_ai_usage(duration_seconds: float, input_tokens: int = 0,
                    output_tokens: int = 0, error: str = None):
    """Record one LLM call."""
    AI_REQUEST_DURATION.observe(duration_seconds)
    if error:
        AI_ERRORS.labels(error_type=error).inc()
        return
    AI_TOKENS.labels(direction='input').inc(input_tokens)
    AI_TOKENS.labels(direction='output').inc(output_tokens)
