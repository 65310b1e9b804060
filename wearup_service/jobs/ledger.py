"""
Ledger Reconciliation
Exactly-once debit and refund of account credits for terminal jobs.

The per-job paid flag is the guard. Every mutation first wins a
compare-and-set on the flag, so repeated or concurrent observations of
the same terminal status change the balance at most once.

    succeeded:        paid False -> True, then debit
    failed/canceled:  paid True -> False, then refund
"""
import logging

from wearup_service.core.errors import InsufficientBalanceError
from wearup_service.jobs.status import NEGATIVE_STATUSES, SUCCEEDED
from wearup_service.observability import increment, log_job_event

logger = logging.getLogger(__name__)

DEBITED = "debited"
REFUNDED = "refunded"
INSUFFICIENT_BALANCE = "insufficient_balance"
NOOP = "noop"


class LedgerReconciler:
    """Applies balance mutations for observed job outcomes."""

    def __init__(self, ledger):
        self.ledger = ledger

    def ensure_affordable(self, account_id: str, cost: int) -> int:
        """
        Returns:
            Current balance

        Raises:
            InsufficientBalanceError: If the balance is below cost
        """
        balance = self.ledger.get_balance(account_id)
        if balance < cost:
            raise InsufficientBalanceError(account_id, required=cost, available=balance)
        return balance

    def reconcile(self, job: dict, status: str) -> str:
        """
        Apply the ledger effect of observing `status` for `job`.

        Args:
            job: Persisted job row (job_id, account_id, cost)
            status: Observed provider status

        Returns:
            debited, refunded, insufficient_balance or noop
        """
        if status == SUCCEEDED:
            action = self._settle_success(job)
        elif status in NEGATIVE_STATUSES:
            action = self._settle_failure(job)
        else:
            return NOOP

        if action != NOOP:
            log_job_event(
                job["job_id"],
                "reconciled",
                status=status,
                kind=job.get("kind"),
                account_id=job["account_id"],
                ledger_action=action,
            )
        return action

    def _settle_success(self, job: dict) -> str:
        job_id, account_id, cost = job["job_id"], job["account_id"], int(job["cost"])

        # Failed and canceled are final; a late success report never re-debits
        if job.get("status") in NEGATIVE_STATUSES:
            return NOOP

        if not self.ledger.swap_job_paid_flag(job_id, expected=False, new=True):
            return NOOP

        if not self.ledger.debit(account_id, cost):
            # Release the claim so a later observation can retry the debit
            self.ledger.set_job_paid_flag(job_id, False)
            logger.warning(
                f"Job {job_id} succeeded but {account_id} cannot cover {cost} credits, debit skipped"
            )
            return INSUFFICIENT_BALANCE

        increment("debits")
        increment("credits_debited", cost)
        logger.info(f"Debited {cost} credits from {account_id} for job {job_id}")
        return DEBITED

    def _settle_failure(self, job: dict) -> str:
        job_id, account_id, cost = job["job_id"], job["account_id"], int(job["cost"])

        if not self.ledger.swap_job_paid_flag(job_id, expected=True, new=False):
            return NOOP

        self.ledger.credit(account_id, cost)
        increment("refunds")
        increment("credits_refunded", cost)
        logger.info(f"Refunded {cost} credits to {account_id} for job {job_id}")
        return REFUNDED
