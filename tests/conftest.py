"""
Shared fixtures and fakes.

Fakes stand in for the network: FakeFetcher serves in-memory images with
configurable latency, FakeProvider replays scripted job statuses.
"""
import asyncio
import io
import itertools
from typing import Dict, List, Optional, Union

import pytest
from PIL import Image

from wearup_service.config import Settings
from wearup_service.core.errors import LayerFetchError
from wearup_service.core.storage import LocalStorage
from wearup_service.db import MemoryCoverStore, MemoryJobStore, MemoryLedgerStore
from wearup_service.jobs.status import JobStatus
from wearup_service.observability import reset_metrics


def png_bytes(color=(255, 0, 0, 255), size=(110, 120)) -> bytes:
    """Solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeFetcher:
    """Image fetcher backed by a dict; unknown URLs fail like a 404."""

    def __init__(self, images: Optional[Dict[str, bytes]] = None, delays: Optional[Dict[str, float]] = None):
        self.images = dict(images or {})
        self.delays = dict(delays or {})
        self.requested: List[str] = []

    async def fetch(self, url: str) -> bytes:
        self.requested.append(url)
        await asyncio.sleep(self.delays.get(url, 0))
        if url not in self.images:
            raise LayerFetchError("HTTP 404", url=url)
        return self.images[url]

    async def aclose(self):
        pass


Step = Union[JobStatus, Exception, str]


class FakeProvider:
    """
    Job provider that replays a script per job id.

    A script entry is a JobStatus, a bare status string, or an exception to
    raise. The last entry repeats once the script runs out.
    """

    def __init__(self):
        self.scripts: Dict[str, List[Step]] = {}
        self.submitted: List[dict] = []
        self.status_calls: Dict[str, int] = {}
        self.submit_error: Optional[Exception] = None
        self._ids = itertools.count(1)

    def script(self, job_id: str, *steps: Step):
        self.scripts[job_id] = list(steps)

    async def submit(self, kind: str, model: str, params: dict) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        job_id = f"job-{next(self._ids)}"
        self.submitted.append({"job_id": job_id, "kind": kind, "model": model, "params": params})
        return job_id

    async def get_status(self, job_id: str, kind: Optional[str] = None) -> JobStatus:
        calls = self.status_calls.get(job_id, 0)
        self.status_calls[job_id] = calls + 1

        steps = self.scripts.get(job_id) or ["processing"]
        step = steps[min(calls, len(steps) - 1)]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, str):
            return JobStatus(job_id=job_id, status=step)
        return step


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def quiet_job_log(monkeypatch):
    """Keep job events out of logs/jobs.log and start from zeroed metrics."""
    monkeypatch.setenv("WEARUP_LOGGING_ENABLED", "false")
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=str(tmp_path),
        mongo_enabled=False,
        poll_interval=0.0,
        poll_max_attempts=3,
        logging_enabled=False,
    )


@pytest.fixture
def storage(tmp_path):
    local = LocalStorage(str(tmp_path))
    local.ensure_directories()
    return local


@pytest.fixture
def job_store():
    return MemoryJobStore()


@pytest.fixture
def ledger_store(job_store):
    return MemoryLedgerStore(job_store, balances={"acct-1": 250})


@pytest.fixture
def cover_store():
    return MemoryCoverStore()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def fetcher():
    return FakeFetcher()
