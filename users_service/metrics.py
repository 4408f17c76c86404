"""Prometheus instruments for account lifecycle operations."""

from __future__ import annotations

from prometheus_client import Counter

LIFECYCLE_OPERATIONS = Counter(
    "users_lifecycle_operations_total",
    "Account lifecycle operations by outcome.",
    ["operation", "outcome"],
)


def record_operation(operation: str, outcome: str = "ok") -> None:
    LIFECYCLE_OPERATIONS.labels(operation=operation, outcome=outcome).inc()
