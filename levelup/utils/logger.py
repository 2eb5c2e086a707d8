"""
Structured JSON Logger for Level Up Solo
Optimized for Grafana Loki ingestion via Promtail
"""

import json
import sys
import uuid
import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from flask import has_request_context, request, g


class StructuredLogger:
    """
    Structured JSON logger for Loki integration.

    Outputs JSON logs to stdout which are collected by Promtail.
    Labels (low cardinality): service, level, event_type
    Context (high cardinality): user_id, task_id, amounts, etc.
    """

    def __init__(self, service_name: str = "levelup-web"):
        self.service = service_name

    def get_trace_id(self) -> str:
        """Get trace ID from request header, or generate one per request."""
        if has_request_context():
            if 'trace_id' not in g:
                g.trace_id = request.headers.get('X-Request-ID', str(uuid.uuid4())[:8])
            return g.trace_id
        return str(uuid.uuid4())[:8]

    def _get_request_context(self) -> Dict[str, Any]:
        """Extract request context if available."""
        if has_request_context():
            return {
                "endpoint": request.endpoint,
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr
            }
        return {}

    def _format_log(
        self,
        level: str,
        event_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None
    ) -> str:
        """Format log entry as JSON string."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "service": self.service,
            "event_type": event_type,
            "message": message,
            "trace_id": self.get_trace_id()
        }

        request_ctx = self._get_request_context()
        if request_ctx:
            log_entry["request"] = request_ctx

        if context:
            log_entry["context"] = context
        if metrics:
            log_entry["metrics"] = metrics
        if error:
            log_entry["error"] = error

        return json.dumps(log_entry, ensure_ascii=False, default=str)

    def _write(self, log_json: str):
        """Write log to stdout (collected by Promtail)."""
        print(log_json, file=sys.stdout, flush=True)

    # =========================================================================
    # Core logging methods
    # =========================================================================

    def info(self, event_type: str, message: str,
             context: Dict = None, metrics: Dict = None):
        """Log INFO level event."""
        self._write(self._format_log("INFO", event_type, message, context, metrics))

    def warning(self, event_type: str, message: str,
                context: Dict = None, metrics: Dict = None):
        """Log WARNING level event."""
        self._write(self._format_log("WARNING", event_type, message, context, metrics))

    def error(self, event_type: str, message: str,
              context: Dict = None, error: Dict = None, exception: Exception = None):
        """Log ERROR level event with optional exception details."""
        error_dict = error or {}
        if exception:
            error_dict.update({
                "type": type(exception).__name__,
                "message": str(exception),
                "traceback": traceback.format_exc()
            })
        self._write(self._format_log("ERROR", event_type, message, context, error=error_dict if error_dict else None))

    def debug(self, event_type: str, message: str,
              context: Dict = None, metrics: Dict = None):
        """Log DEBUG level event."""
        self._write(self._format_log("DEBUG", event_type, message, context, metrics))

    # =========================================================================
    # Business event helpers
    # =========================================================================

    def energy_changed(self, user_id: str, operation: str, amount: Optional[int],
                       balance: int, capacity: int, task_id: int = None):
        """Log a consume/restore on the energy ledger."""
        self.info(
            event_type="ENERGY_CHANGED",
            message=f"Energy {operation}: {amount if amount is not None else 'full'} -> {balance}/{capacity}",
            context={
                "user_id": user_id,
                "operation": operation,
                "task_id": task_id
            },
            metrics={
                "amount": amount,
                "balance": balance,
                "capacity": capacity
            }
        )

    def energy_reset(self, user_id: str, trigger: str, capacity: int):
        """Log a daily (or forced) energy refill."""
        self.info(
            event_type="ENERGY_RESET",
            message=f"Energy reset ({trigger}) to {capacity}",
            context={
                "user_id": user_id,
                "trigger": trigger
            },
            metrics={
                "capacity": capacity
            }
        )

    def task_completed(self, user_id: str, task_id: int, category: str,
                       difficulty: str, completed: bool, energy_balls: int,
                       xp_earned: int = 0):
        """Log a task completion toggle."""
        self.info(
            event_type="TASK_COMPLETED" if completed else "TASK_UNCOMPLETED",
            message=f"Task {task_id} {'completed' if completed else 'reopened'}",
            context={
                "user_id": user_id,
                "task_id": task_id,
                "category": category,
                "difficulty": difficulty
            },
            metrics={
                "energy_balls": energy_balls,
                "xp_earned": xp_earned
            }
        )

    def level_up(self, user_id: str, old_level: int, new_level: int, total_xp: int):
        """Log level up event."""
        self.info(
            event_type="LEVEL_UP",
            message=f"Level up: {old_level} -> {new_level}",
            context={
                "user_id": user_id,
                "old_level": old_level,
                "new_level": new_level
            },
            metrics={
                "total_xp": total_xp
            }
        )

    def ai_classification(self, source: str, category: str, difficulty: str,
                          energy_balls: int, latency_ms: int = None):
        """Log a task classification result."""
        self.info(
            event_type="AI_CLASSIFICATION",
            message=f"Task classified via {source}: {category}/{difficulty}",
            context={
                "source": source,
                "category": category,
                "difficulty": difficulty
            },
            metrics={
                "energy_balls": energy_balls,
                "latency_ms": latency_ms
            }
        )

    def cache_hit(self, cache_type: str):
        """Log cache hit."""
        self.debug(
            event_type="CACHE_HIT",
            message=f"Cache hit: {cache_type}",
            context={"cache_type": cache_type}
        )

    def cache_miss(self, cache_type: str, reason: str = None):
        """Log cache miss."""
        self.debug(
            event_type="CACHE_MISS",
            message=f"Cache miss: {cache_type}",
            context={"cache_type": cache_type, "reason": reason}
        )

    def api_error(self, endpoint: str, error_type: str,
                  error_message: str, status_code: int = 500):
        """Log API error event."""
        self.error(
            event_type="API_ERROR",
            message=f"API error on {endpoint}: {error_type}",
            context={
                "endpoint": endpoint,
                "status_code": status_code
            },
            error={
                "type": error_type,
                "message": error_message
            }
        )

    def websocket_event(self, event: str, client_count: int = None, user_id: str = None):
        """Log WebSocket event."""
        self.debug(
            event_type="WEBSOCKET",
            message=f"WebSocket: {event}",
            context={
                "event": event,
                "user_id": user_id
            },
            metrics={
                "active_clients": client_count
            } if client_count is not None else None
        )


# Singleton instance
logger = StructuredLogger("levelup-web")
