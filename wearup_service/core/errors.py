"""
Error kinds shared by the compositor, poller and ledger.

Recovered at the component boundary: LayerFetchError, StorageDeleteError.
Everything else propagates to the HTTP layer.
"""
from typing import Optional


class WearUpError(Exception):
    """Base error with an HTTP status hint."""
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# ==================== IMAGING ====================

class LayerFetchError(WearUpError):
    """An image could not be fetched or decoded."""
    status_code = 422

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class CompositeEncodeError(WearUpError):
    """The flattened canvas could not be encoded."""


# ==================== STORAGE ====================

class StorageUploadError(WearUpError):
    """Upload to object storage failed."""


class StorageDeleteError(WearUpError):
    """Delete from object storage failed."""


# ==================== JOBS ====================

class JobError(WearUpError):
    """Base class for external job errors."""
    status_code = 502

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message)


class JobSubmitError(JobError):
    """The provider rejected or failed a job submission."""


class JobStatusFetchError(JobError):
    """A status query failed (network or API error). Transient."""


class JobNotFoundError(JobError):
    """No persisted job with this id."""
    status_code = 404


class JobTerminalFailure(JobError):
    """The job reached failed or canceled."""

    def __init__(self, message: str, job_id: Optional[str] = None, status=None):
        self.status = status
        super().__init__(message, job_id=job_id)


class JobContentPolicyError(JobTerminalFailure):
    """The provider rejected the job for content policy reasons."""
    status_code = 422

    user_message = (
        "Your content has been flagged as inappropriate. "
        "Please try again with a different image or settings."
    )


class JobTimeoutError(JobError):
    """The job did not reach a terminal state within the polling budget."""
    status_code = 504

    def __init__(self, message: str, job_id: Optional[str] = None, last_status: Optional[str] = None):
        self.last_status = last_status
        super().__init__(message, job_id=job_id)


# ==================== LEDGER ====================

class InsufficientBalanceError(WearUpError):
    """The account cannot cover the job cost."""
    status_code = 402

    def __init__(self, account_id: str, required: int, available: int):
        self.account_id = account_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credit balance. Required: {required} credits, available: {available}"
        )
