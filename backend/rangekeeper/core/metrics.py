"""
Rangekeeper - Prometheus Metrics
"""

from prometheus_client import Counter, Gauge

RESOURCE_TRANSITIONS = Counter(
    "rangekeeper_resource_transitions_total",
    "Lifecycle transitions applied to resources",
    ["from_status", "to_status", "trigger"],
)

EXECUTION_OUTCOMES = Counter(
    "rangekeeper_execution_outcomes_total",
    "Per-resource outcomes of deploy, revoke and delete executions",
    ["operation", "outcome"],
)

HEALTH_SIGNALS = Counter(
    "rangekeeper_health_signals_total",
    "Health signals received by the intake",
    ["source", "healthy"],
)

ACTIVE_EXECUTIONS = Gauge(
    "rangekeeper_active_executions",
    "Plan executions currently running",
)
