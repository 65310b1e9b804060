"""
Job status model shared by the provider, poller and ledger.
"""
import re
from dataclasses import dataclass
from typing import Any, Optional

STARTING = "starting"
PROCESSING = "processing"
SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELED = "canceled"

TERMINAL_STATUSES = frozenset({SUCCEEDED, FAILED, CANCELED})
NEGATIVE_STATUSES = frozenset({FAILED, CANCELED})

CONTENT_POLICY_SIGNATURES = ("flagged as sensitive", "e005", "sensitive content")

# Training logs report "flux_train_replicate:  42%", others a tqdm bar "42%|####"
_TRAINING_PROGRESS = re.compile(r"flux_train_replicate:\s*(\d+)%")
_BAR_PROGRESS = re.compile(r"(\d+)%\|")


def is_content_policy_violation(error: Any) -> bool:
    """True when a provider error text carries a content-policy signature."""
    if not error:
        return False
    text = str(error).lower()
    return any(signature in text for signature in CONTENT_POLICY_SIGNATURES)


def extract_progress(logs: Optional[str]) -> int:
    """Latest percentage found in provider logs, 0 when none."""
    if not logs:
        return 0
    matches = _TRAINING_PROGRESS.findall(logs) or _BAR_PROGRESS.findall(logs)
    if not matches:
        return 0
    return max(0, min(100, int(matches[-1])))


@dataclass
class JobStatus:
    """One observation of an external job."""
    job_id: str
    status: str
    output: Any = None
    error: Optional[str] = None
    logs: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_content_policy_violation(self) -> bool:
        return self.status in NEGATIVE_STATUSES and is_content_policy_violation(self.error)

    @property
    def progress(self) -> int:
        if self.status == SUCCEEDED:
            return 100
        return extract_progress(self.logs)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "progress": self.progress,
        }
