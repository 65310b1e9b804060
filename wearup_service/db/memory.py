"""
In-memory stores with the same interface as the MongoDB ones.
Used when MongoDB is unreachable and in tests.
"""
import copy
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryJobStore:
    """Job rows kept in a dict."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, dict] = {}

    def insert_job(self, job: dict) -> None:
        with self._lock:
            if job["job_id"] in self._jobs:
                raise KeyError(f"Duplicate job: {job['job_id']}")
            self._jobs[job["job_id"]] = copy.deepcopy(job)

    def update_job(self, job_id: str, fields: dict) -> None:
        with self._lock:
            if job_id in self._jobs:
                self._jobs[job_id].update(copy.deepcopy(fields), updated_at=_now())

    def get_job(self, job_id: str) -> Optional[dict]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_jobs(self, account_id: str, statuses: Optional[Iterable[str]] = None) -> List[dict]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            jobs = [
                copy.deepcopy(job) for job in self._jobs.values()
                if job.get("account_id") == account_id
                and (wanted is None or job.get("status") in wanted)
            ]
        return sorted(jobs, key=lambda j: j.get("created_at", ""), reverse=True)

    # Paid flag access for MemoryLedgerStore, under the same lock

    def _get_flag(self, job_id: str) -> bool:
        with self._lock:
            return bool(self._jobs.get(job_id, {}).get("paid"))

    def _set_flag(self, job_id: str, paid: bool) -> None:
        with self._lock:
            if job_id in self._jobs:
                self._jobs[job_id]["paid"] = paid

    def _swap_flag(self, job_id: str, expected: bool, new: bool) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or bool(job.get("paid")) != expected:
                return False
            job["paid"] = new
            job["updated_at"] = _now()
            return True


class MemoryLedgerStore:
    """Balances in a dict; paid flags live on the shared job store rows."""

    def __init__(self, jobs: MemoryJobStore, balances: Optional[Dict[str, int]] = None):
        self.jobs = jobs
        self._lock = threading.Lock()
        self._balances: Dict[str, int] = dict(balances or {})

    def get_balance(self, account_id: str) -> int:
        with self._lock:
            return self._balances.get(account_id, 0)

    def set_balance(self, account_id: str, balance: int) -> None:
        if balance < 0:
            raise ValueError("Balance cannot be negative")
        with self._lock:
            self._balances[account_id] = int(balance)

    def get_job_paid_flag(self, job_id: str) -> bool:
        return self.jobs._get_flag(job_id)

    def set_job_paid_flag(self, job_id: str, paid: bool) -> None:
        self.jobs._set_flag(job_id, bool(paid))

    def swap_job_paid_flag(self, job_id: str, expected: bool, new: bool) -> bool:
        return self.jobs._swap_flag(job_id, expected, new)

    def debit(self, account_id: str, amount: int) -> bool:
        with self._lock:
            balance = self._balances.get(account_id, 0)
            if balance < amount:
                return False
            self._balances[account_id] = balance - amount
            return True

    def credit(self, account_id: str, amount: int) -> int:
        with self._lock:
            self._balances[account_id] = self._balances.get(account_id, 0) + amount
            return self._balances[account_id]


class MemoryCoverStore:
    """Cover URL per outfit in a dict."""

    def __init__(self):
        self._lock = threading.Lock()
        self._covers: Dict[str, str] = {}

    def get_cover_url(self, outfit_id: str) -> Optional[str]:
        with self._lock:
            return self._covers.get(outfit_id)

    def set_cover_url(self, outfit_id: str, url: str) -> None:
        with self._lock:
            self._covers[outfit_id] = url
