"""
Replicate Job Provider

Submits predictions and trainings and reads their status.
The replicate client is synchronous; every call runs in a worker thread.

Setup:
1. Get an API token from https://replicate.com/account/api-tokens
2. Set environment variable: REPLICATE_API_TOKEN=your_token
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
import replicate
from replicate.exceptions import ReplicateError

from wearup_service.core.errors import JobStatusFetchError, JobSubmitError
from wearup_service.jobs.status import JobStatus

logger = logging.getLogger(__name__)

TRAINING_KIND = "training"

PROVIDER_ERRORS = (ReplicateError, httpx.HTTPError)


def _jsonable(value: Any) -> Any:
    """Provider outputs may hold file objects; keep them as URL strings."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


def _to_status(job) -> JobStatus:
    return JobStatus(
        job_id=job.id,
        status=job.status,
        output=_jsonable(job.output),
        error=str(job.error) if job.error else None,
        logs=job.logs,
    )


class ReplicateJobProvider:
    """Job provider backed by the Replicate API."""

    def __init__(self, api_token: Optional[str] = None, client: Optional[replicate.Client] = None):
        self.client = client or replicate.Client(api_token=api_token)

    async def submit(self, kind: str, model: str, params: Dict[str, Any]) -> str:
        """
        Start a job and return its id.

        Raises:
            JobSubmitError: If the provider rejects the request
        """
        try:
            if kind == TRAINING_KIND:
                job = await asyncio.to_thread(self._create_training, model, params)
            else:
                job = await asyncio.to_thread(self._create_prediction, model, params)
        except PROVIDER_ERRORS as e:
            raise JobSubmitError(f"Replicate rejected {kind} job: {e}") from e

        logger.info(f"Replicate {kind} job started: {job.id} ({model})")
        return job.id

    async def get_status(self, job_id: str, kind: Optional[str] = None) -> JobStatus:
        """
        Raises:
            JobStatusFetchError: On network or API errors
        """
        api = self.client.trainings if kind == TRAINING_KIND else self.client.predictions
        try:
            job = await asyncio.to_thread(api.get, job_id)
        except PROVIDER_ERRORS as e:
            raise JobStatusFetchError(f"Status fetch failed: {e}", job_id=job_id) from e

        return _to_status(job)

    def _create_prediction(self, model: str, params: Dict[str, Any]):
        # "owner/name:version" pins a version, "owner/name" runs the latest
        if ":" in model:
            return self.client.predictions.create(version=model.split(":", 1)[1], input=params)
        return self.client.predictions.create(model=model, input=params)

    def _create_training(self, model: str, params: Dict[str, Any]):
        params = dict(params)
        destination = params.pop("destination", None)
        if not destination:
            raise JobSubmitError("Training jobs need input.destination (owner/model)")

        owner_name, _, version = model.partition(":")
        return self.client.trainings.create(
            model=owner_name,
            version=version,
            input=params,
            destination=destination,
        )
