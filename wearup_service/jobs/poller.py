"""
Async Job Poller
Watches an external job until it settles or the budget runs out.

Timing out only stops watching; the external job keeps running.
"""
import asyncio
import logging
import time
from typing import Optional

from wearup_service.core.errors import (
    JobContentPolicyError,
    JobStatusFetchError,
    JobTerminalFailure,
    JobTimeoutError,
)
from wearup_service.jobs.status import SUCCEEDED, JobStatus
from wearup_service.observability import increment

logger = logging.getLogger(__name__)


def raise_for_terminal_failure(status: JobStatus):
    """Raise the error kind matching a failed or canceled status."""
    if status.is_content_policy_violation:
        increment("content_policy_rejections")
        raise JobContentPolicyError(
            f"Job {status.job_id} rejected by content policy: {status.error}",
            job_id=status.job_id,
            status=status,
        )
    raise JobTerminalFailure(
        f"Job {status.job_id} {status.status}: {status.error or 'no reason given'}",
        job_id=status.job_id,
        status=status,
    )


async def poll_until_terminal(
    provider,
    job_id: str,
    max_attempts: int,
    interval: float,
    timeout: Optional[float] = None,
    kind: Optional[str] = None,
    sleep=asyncio.sleep,
) -> JobStatus:
    """
    Poll until the job succeeds, fails or the budget is spent.

    Args:
        provider: Object with async get_status(job_id, kind=None)
        job_id: External job id
        max_attempts: Status fetches allowed
        interval: Seconds between attempts
        timeout: Optional wall-clock limit in seconds
        kind: Job kind, passed through to the provider
        sleep: Awaitable delay (injected by tests)

    Returns:
        The succeeded status

    Raises:
        JobContentPolicyError: Failure carrying a content-policy signature
        JobTerminalFailure: Any other failed or canceled outcome
        JobTimeoutError: Attempts or time exhausted
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    deadline = time.monotonic() + timeout if timeout is not None else None
    last_status: Optional[str] = None
    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            status = await provider.get_status(job_id, kind=kind)
        except JobStatusFetchError as e:
            last_error = e
            logger.warning(f"Poll {attempt}/{max_attempts} for {job_id} failed: {e}")
        else:
            last_status = status.status
            if status.status == SUCCEEDED:
                logger.info(f"✓ Job {job_id} succeeded after {attempt} poll(s)")
                return status
            if status.is_terminal:
                raise_for_terminal_failure(status)
            logger.debug(f"Poll {attempt}/{max_attempts} for {job_id}: {status.status}")

        if attempt == max_attempts:
            break
        if deadline is not None and time.monotonic() + interval > deadline:
            break
        await sleep(interval)

    increment("poll_timeouts")
    error = JobTimeoutError(
        f"Job {job_id} not finished after {attempt} poll(s) (last status: {last_status})",
        job_id=job_id,
        last_status=last_status,
    )
    if last_error is not None:
        raise error from last_error
    raise error
