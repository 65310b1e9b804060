"""
Job Service
Submits billed jobs, observes their status and keeps the ledger in step.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from wearup_service.config import CHARGE_ON_SUBMIT
from wearup_service.core.errors import (
    InsufficientBalanceError,
    JobNotFoundError,
    JobStatusFetchError,
    JobSubmitError,
    JobTerminalFailure,
    JobTimeoutError,
)
from wearup_service.jobs.ledger import LedgerReconciler
from wearup_service.jobs.poller import poll_until_terminal
from wearup_service.jobs.status import PROCESSING, STARTING, TERMINAL_STATUSES, JobStatus
from wearup_service.observability import increment, log_job_event, record_job_outcome

logger = logging.getLogger(__name__)

PENDING_STATUSES = (STARTING, PROCESSING)


class JobService:
    """Job lifecycle on top of a provider, a job store and a ledger store."""

    def __init__(self, provider, jobs, ledger, settings):
        self.provider = provider
        self.jobs = jobs
        self.ledger = ledger
        self.settings = settings
        self.policies = settings.billing_policies()
        self.reconciler = LedgerReconciler(ledger)

    async def submit(self, account_id: str, kind: str, model: str, params: Dict[str, Any]) -> dict:
        """
        Start a billed job.

        Returns:
            The persisted job row

        Raises:
            InsufficientBalanceError: Before the provider is contacted
            JobSubmitError: If the provider rejects the job (any debit is refunded)
        """
        policy = self.policies.get(kind)
        if policy is None:
            raise ValueError(f"Unknown job kind: {kind}")

        self.reconciler.ensure_affordable(account_id, policy.cost)

        paid = False
        if policy.charge == CHARGE_ON_SUBMIT:
            if not self.ledger.debit(account_id, policy.cost):
                raise InsufficientBalanceError(
                    account_id, required=policy.cost, available=self.ledger.get_balance(account_id)
                )
            paid = True

        start = time.perf_counter()
        try:
            job_id = await self.provider.submit(kind, model, params)
        except JobSubmitError:
            if paid:
                self.ledger.credit(account_id, policy.cost)
                logger.warning(f"Submission failed, refunded {policy.cost} credits to {account_id}")
            raise

        now = datetime.now(timezone.utc).isoformat()
        job = {
            "job_id": job_id,
            "kind": kind,
            "model": model,
            "account_id": account_id,
            "cost": policy.cost,
            "charge": policy.charge,
            "status": STARTING,
            "paid": paid,
            "output": None,
            "error": None,
            "progress": 0,
            "created_at": now,
            "updated_at": now,
        }
        self.jobs.insert_job(job)

        increment("jobs_submitted")
        if paid:
            increment("debits")
            increment("credits_debited", policy.cost)

        log_job_event(
            job_id,
            "submitted",
            status=STARTING,
            kind=kind,
            account_id=account_id,
            ledger_action="debited" if paid else None,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
        logger.info(f"Job {job_id} submitted: kind={kind}, account={account_id}, paid={paid}")
        return job

    def get(self, job_id: str) -> dict:
        """
        Raises:
            JobNotFoundError: If no job has this id
        """
        job = self.jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}", job_id=job_id)
        return job

    async def refresh(self, job_id: str) -> dict:
        """Fetch the status once, reconcile and persist."""
        job = self.get(job_id)
        if job["status"] in TERMINAL_STATUSES:
            return self._settle_recorded(job)

        status = await self.provider.get_status(job_id, kind=job["kind"])
        return self._apply(job, status)

    async def wait(
        self,
        job_id: str,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> dict:
        """
        Poll until terminal and reconcile.

        Raises:
            JobContentPolicyError / JobTerminalFailure: After the refund is applied
            JobTimeoutError: Ledger untouched, the job keeps running
        """
        job = self.get(job_id)
        if job["status"] in TERMINAL_STATUSES:
            return self._settle_recorded(job)

        try:
            status = await poll_until_terminal(
                self.provider,
                job_id,
                max_attempts=max_attempts or self.settings.poll_max_attempts,
                interval=self.settings.poll_interval if interval is None else interval,
                timeout=self.settings.poll_timeout if timeout is None else timeout,
                kind=job["kind"],
            )
        except JobTerminalFailure as e:
            if e.status is not None:
                self._apply(job, e.status)
            raise
        except JobTimeoutError as e:
            log_job_event(
                job_id, "timeout", status=e.last_status, kind=job["kind"],
                account_id=job["account_id"], error=e.message,
            )
            raise

        return self._apply(job, status)

    async def refresh_account(self, account_id: str) -> dict:
        """Refresh every pending job of the account, then report the balance."""
        pending = self.jobs.list_jobs(account_id, statuses=PENDING_STATUSES)
        refreshed = 0

        for job in pending:
            try:
                await self.refresh(job["job_id"])
                refreshed += 1
            except (JobStatusFetchError, JobNotFoundError) as e:
                logger.warning(f"Could not refresh job {job['job_id']}: {e}")

        return {
            "account_id": account_id,
            "balance": self.ledger.get_balance(account_id),
            "pending_jobs": len(pending),
            "refreshed_jobs": refreshed,
        }

    def _settle_recorded(self, job: dict) -> dict:
        """
        Terminal rows never change. Reconciling the recorded status is
        idempotent and only collects a success debit that was skipped for
        lack of balance.
        """
        action = self.reconciler.reconcile(job, job["status"])
        updated = self.get(job["job_id"])
        updated["ledger_action"] = action
        return updated

    def _apply(self, job: dict, status: JobStatus) -> dict:
        # Re-read: another observer may have recorded a terminal status meanwhile
        job = self.get(job["job_id"])
        if job["status"] in TERMINAL_STATUSES:
            return self._settle_recorded(job)

        action = self.reconciler.reconcile(job, status.status)

        fields = {
            "status": status.status,
            "output": status.output,
            "error": status.error,
            "progress": status.progress,
        }
        self.jobs.update_job(job["job_id"], fields)

        if status.is_terminal and job.get("status") != status.status:
            record_job_outcome(status.status)
            log_job_event(
                job["job_id"], "observed", status=status.status, kind=job.get("kind"),
                account_id=job.get("account_id"), error=status.error,
            )

        updated = self.get(job["job_id"])
        updated["ledger_action"] = action
        return updated
