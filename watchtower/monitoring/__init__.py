"""
WATCHTOWER - Monitoring Module
==============================
Observability components: metrics and alerts.
"""

from watchtower.monitoring.metrics import (
    ACTIVE_POLL_TASKS,
    BREACH_ALERTS_TOTAL,
    SWEEPS_TOTAL,
    record_breach_alert,
    record_sweep,
)
from watchtower.monitoring.alerts import send_sweep_failure_alert

__all__ = [
    "ACTIVE_POLL_TASKS",
    "BREACH_ALERTS_TOTAL",
    "SWEEPS_TOTAL",
    "record_breach_alert",
    "record_sweep",
    "send_sweep_failure_alert",
]
