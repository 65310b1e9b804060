"""
Metrics Module
Track compositions, dropped layers, job outcomes and ledger mutations.
"""
import threading
from typing import Dict, Any

COUNTER_NAMES = (
    "compositions",
    "reference_canvases",
    "layers_rendered",
    "layers_dropped",
    "jobs_submitted",
    "jobs_succeeded",
    "jobs_failed",
    "jobs_canceled",
    "content_policy_rejections",
    "poll_timeouts",
    "debits",
    "refunds",
    "credits_debited",
    "credits_refunded",
)

# Thread-safe metrics storage
_lock = threading.Lock()
_metrics: Dict[str, int] = {name: 0 for name in COUNTER_NAMES}


def increment(name: str, amount: int = 1):
    """
    Increase a counter.

    Args:
        name: One of COUNTER_NAMES
        amount: Increment (default 1)
    """
    if name not in _metrics:
        raise KeyError(f"Unknown metric: {name}")

    with _lock:
        _metrics[name] += amount


def record_job_outcome(status: str):
    """Count a terminal job observation."""
    counter = {
        "succeeded": "jobs_succeeded",
        "failed": "jobs_failed",
        "canceled": "jobs_canceled",
    }.get(status)

    if counter:
        increment(counter)


def get_metrics() -> Dict[str, Any]:
    """Get current metrics snapshot."""
    with _lock:
        snapshot = dict(_metrics)

    total_layers = snapshot["layers_rendered"] + snapshot["layers_dropped"]
    snapshot["layer_drop_ratio"] = (
        round(snapshot["layers_dropped"] / total_layers, 3) if total_layers > 0 else 0.0
    )
    return snapshot


def reset_metrics():
    """Reset all metrics (for testing)."""
    with _lock:
        for name in COUNTER_NAMES:
            _metrics[name] = 0
