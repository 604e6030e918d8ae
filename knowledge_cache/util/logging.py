"""
Structured logging for cache operations.
Every subsystem logs through the shared ``logger`` instance so operation names
and detail payloads stay uniform across store, search, eviction and lifecycle.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for vector cache operations."""

    def __init__(self, name: str = "knowledge_cache"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_vector_operation(self, operation: str, record_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a store mutation for a single entry."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(sanitize_payload(details))

        self.log_operation(f"vector.{operation}", status, log_details, level=logging.DEBUG)

    def log_search(self, scope: str, scanned: int, returned: int, threshold: float, limit: int, duration_ms: float, top_score: float = None):
        """Log a completed similarity search."""
        details = {
            "scope": scope,
            "scanned": scanned,
            "returned": returned,
            "threshold": threshold,
            "limit": limit,
            "duration_ms": round(duration_ms, 2),
        }
        if top_score is not None:
            details["top_score"] = round(top_score, 4)

        self.log_operation("search.completed", "success" if returned else "empty", details)

    def log_eviction(self, strategy: str, evicted_count: int, candidates_found: int, freed_bytes: int, details: Dict[str, Any] = None):
        """Log an eviction batch."""
        log_details = {
            "strategy": strategy,
            "evicted_count": evicted_count,
            "candidates_found": candidates_found,
            "freed_bytes": freed_bytes,
        }
        if details:
            log_details.update(details)

        status = "success" if evicted_count else "no_candidates"
        self.log_operation("eviction.batch", status, log_details)

    def log_integrity_finding(self, finding_type: str, severity: str, record_id: str, details: Dict[str, Any] = None):
        """Log a corruption finding from an integrity scan."""
        log_details = {
            "finding_type": finding_type,
            "severity": severity,
            "record_id": record_id,
        }
        if details:
            log_details.update(details)

        self.log_operation("integrity.finding", "detected", log_details, level=logging.WARNING)

    def log_lifecycle_transition(self, scope: str, from_state: str, to_state: str, details: Dict[str, Any] = None):
        """Log a scope state-machine transition."""
        log_details = {"scope": scope, "from": from_state, "to": to_state}
        if details:
            log_details.update(details)

        level = logging.ERROR if to_state == "failed" else logging.INFO
        self.log_operation("lifecycle.transition", to_state, log_details, level=level)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Heartbeat task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Heartbeat task '{task_name}' failed after {duration_ms}ms"

        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation(f"heartbeat.{task_name}", status, log_details, level=level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, sensitive_fields: List[str] = None) -> Any:
    """Truncate long strings and drop raw vectors from log payloads."""
    if sensitive_fields is None:
        sensitive_fields = ['embedding', 'vector', 'content']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if k in sensitive_fields:
                sanitized[k] = "[OMITTED]"
            else:
                sanitized[k] = sanitize_payload(v, sensitive_fields)
        return sanitized
    elif isinstance(payload, str):
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, sensitive_fields) for item in payload]
    else:
        return payload
