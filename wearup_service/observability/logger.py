"""
Job Event Logger
Structured JSON-lines log of job lifecycle and ledger events.
"""
import os
import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

LOGS_DIR = Path(__file__).parent.parent.parent / "logs"
JOB_LOG_FILE = LOGS_DIR / "jobs.log"

# Dedicated logger, kept out of the root logger's output
job_logger = logging.getLogger("wearup.jobs")
job_logger.setLevel(logging.INFO)
job_logger.propagate = False


def _ensure_handler() -> None:
    """Attach the file handler on first use."""
    if job_logger.handlers:
        return

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(JOB_LOG_FILE, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    job_logger.addHandler(file_handler)


def is_logging_enabled() -> bool:
    """Check if job event logging is enabled."""
    return os.getenv("WEARUP_LOGGING_ENABLED", "true").lower() == "true"


def log_job_event(
    job_id: str,
    event: str,
    status: Optional[str] = None,
    kind: Optional[str] = None,
    account_id: Optional[str] = None,
    ledger_action: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error: Optional[str] = None
):
    """
    Log a structured job event.

    Args:
        job_id: External job identifier
        event: submitted, observed, reconciled, timeout
        status: Provider status at the time of the event
        kind: training, video, image
        account_id: Owning account
        ledger_action: debited, refunded, insufficient_balance, noop
        latency_ms: Time spent in the operation
        error: Error message if any
    """
    if not is_logging_enabled():
        return

    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "job_id": job_id,
        "event": event,
    }

    optional = {
        "status": status,
        "kind": kind,
        "account_id": account_id,
        "ledger_action": ledger_action,
        "latency_ms": latency_ms,
        "error": error,
    }
    entry.update({k: v for k, v in optional.items() if v is not None})

    _ensure_handler()
    job_logger.info(json.dumps(entry))
