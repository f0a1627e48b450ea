"""
WATCHTOWER - Prometheus Metrics
===============================
Application metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
APP_INFO = Info("watchtower_app", "Application information")
APP_INFO.info({
    "version": "1.0.0",
    "name": "Watchtower",
})

# Sweep metrics
SWEEPS_TOTAL = Counter(
    "watchtower_sweeps_total",
    "Total breach monitoring sweeps",
    ["status"]
)

SWEEP_DURATION = Histogram(
    "watchtower_sweep_duration_seconds",
    "Breach monitoring sweep duration in seconds",
    buckets=[1, 5, 15, 60, 300, 900, 3600]
)

SUBJECT_CHECKS_TOTAL = Counter(
    "watchtower_subject_checks_total",
    "Monitored subject lookups by outcome",
    ["outcome"]
)

BREACH_ALERTS_TOTAL = Counter(
    "watchtower_breach_alerts_total",
    "Breach alerts created",
    ["source"]
)

NOTIFICATIONS_TOTAL = Counter(
    "watchtower_notifications_total",
    "Notifications by channel and outcome",
    ["channel", "outcome"]
)

# Workflow polling metrics
WORKFLOW_POLLS_TOTAL = Counter(
    "watchtower_workflow_polls_total",
    "Workflow status polls by outcome",
    ["outcome"]
)

WORKFLOW_TRANSITIONS_TOTAL = Counter(
    "watchtower_workflow_transitions_total",
    "Workflow poll task terminal transitions",
    ["state"]
)

ACTIVE_POLL_TASKS = Gauge(
    "watchtower_active_poll_tasks",
    "Number of workflow poll tasks currently polling"
)


def record_sweep(status: str, duration_seconds: float) -> None:
    """Record a finished sweep."""
    SWEEPS_TOTAL.labels(status=status).inc()
    SWEEP_DURATION.observe(duration_seconds)


def record_subject_check(outcome: str) -> None:
    SUBJECT_CHECKS_TOTAL.labels(outcome=outcome).inc()


def record_breach_alert(source: str) -> None:
    BREACH_ALERTS_TOTAL.labels(source=source).inc()


def record_notification(channel: str, outcome: str) -> None:
    NOTIFICATIONS_TOTAL.labels(channel=channel, outcome=outcome).inc()


def record_poll(outcome: str) -> None:
    WORKFLOW_POLLS_TOTAL.labels(outcome=outcome).inc()


def record_transition(state: str) -> None:
    WORKFLOW_TRANSITIONS_TOTAL.labels(state=state).inc()


def update_active_poll_tasks(count: int) -> None:
    ACTIVE_POLL_TASKS.set(count)
