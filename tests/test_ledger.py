"""
Tests for ledger reconciliation and the in-memory ledger store.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from wearup_service.core.errors import InsufficientBalanceError
from wearup_service.jobs.ledger import (
    DEBITED,
    INSUFFICIENT_BALANCE,
    NOOP,
    REFUNDED,
    LedgerReconciler,
)
from wearup_service.observability import get_metrics


def _job(job_store, job_id="job-1", paid=False, cost=100, status="processing"):
    row = {
        "job_id": job_id,
        "kind": "training",
        "account_id": "acct-1",
        "cost": cost,
        "charge": "on_success",
        "status": status,
        "paid": paid,
    }
    job_store.insert_job(row)
    return row


@pytest.fixture
def reconciler(ledger_store):
    return LedgerReconciler(ledger_store)


class TestChargeOnSuccess:
    """Debit exactly once when a job first succeeds."""

    def test_repeated_success_debits_once(self, reconciler, job_store, ledger_store):
        job = _job(job_store)

        assert reconciler.reconcile(job, "succeeded") == DEBITED
        assert reconciler.reconcile(job, "succeeded") == NOOP

        assert ledger_store.get_balance("acct-1") == 150
        assert ledger_store.get_job_paid_flag("job-1") is True

    def test_failure_after_debit_refunds_once(self, reconciler, job_store, ledger_store):
        job = _job(job_store)
        reconciler.reconcile(job, "succeeded")

        assert reconciler.reconcile(job, "failed") == REFUNDED
        assert reconciler.reconcile(job, "failed") == NOOP
        assert reconciler.reconcile(job, "canceled") == NOOP

        assert ledger_store.get_balance("acct-1") == 250
        assert ledger_store.get_job_paid_flag("job-1") is False

    def test_success_after_recorded_failure_is_noop(self, reconciler, job_store, ledger_store):
        job = _job(job_store, status="failed")

        assert reconciler.reconcile(job, "succeeded") == NOOP
        assert ledger_store.get_balance("acct-1") == 250

    def test_failure_of_unpaid_job_is_noop(self, reconciler, job_store, ledger_store):
        job = _job(job_store)

        assert reconciler.reconcile(job, "failed") == NOOP
        assert ledger_store.get_balance("acct-1") == 250

    def test_non_terminal_status_is_noop(self, reconciler, job_store, ledger_store):
        job = _job(job_store)

        assert reconciler.reconcile(job, "processing") == NOOP
        assert ledger_store.get_job_paid_flag("job-1") is False

    def test_insufficient_balance_skips_debit(self, reconciler, job_store, ledger_store):
        ledger_store.set_balance("acct-1", 40)
        job = _job(job_store)

        assert reconciler.reconcile(job, "succeeded") == INSUFFICIENT_BALANCE
        assert ledger_store.get_balance("acct-1") == 40
        assert ledger_store.get_job_paid_flag("job-1") is False

        # A later observation, after a top-up, collects the debit
        ledger_store.credit("acct-1", 100)
        assert reconciler.reconcile(job, "succeeded") == DEBITED
        assert ledger_store.get_balance("acct-1") == 40

    def test_concurrent_observations_debit_once(self, reconciler, job_store, ledger_store):
        job = _job(job_store)

        with ThreadPoolExecutor(max_workers=8) as pool:
            actions = list(pool.map(lambda _: reconciler.reconcile(job, "succeeded"), range(32)))

        assert actions.count(DEBITED) == 1
        assert ledger_store.get_balance("acct-1") == 150
        assert get_metrics()["debits"] == 1


class TestChargeOnSubmit:
    """Jobs debited at submission are only ever refunded."""

    def test_success_of_prepaid_job_is_noop(self, reconciler, job_store, ledger_store):
        job = _job(job_store, paid=True)

        assert reconciler.reconcile(job, "succeeded") == NOOP
        assert ledger_store.get_balance("acct-1") == 250

    def test_failure_of_prepaid_job_refunds_once(self, reconciler, job_store, ledger_store):
        job = _job(job_store, paid=True)

        assert reconciler.reconcile(job, "canceled") == REFUNDED
        assert reconciler.reconcile(job, "failed") == NOOP

        assert ledger_store.get_balance("acct-1") == 350
        metrics = get_metrics()
        assert metrics["refunds"] == 1
        assert metrics["credits_refunded"] == 100


class TestAffordability:
    """Balance checks before submission."""

    def test_affordable(self, reconciler):
        assert reconciler.ensure_affordable("acct-1", 100) == 250

    def test_unaffordable(self, reconciler):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            reconciler.ensure_affordable("acct-1", 500)

        assert exc_info.value.required == 500
        assert exc_info.value.available == 250

    def test_unknown_account_has_zero_balance(self, reconciler):
        with pytest.raises(InsufficientBalanceError):
            reconciler.ensure_affordable("nobody", 1)


class TestMemoryLedgerStore:
    """Store contract."""

    def test_conditional_debit(self, ledger_store):
        assert ledger_store.debit("acct-1", 250) is True
        assert ledger_store.debit("acct-1", 1) is False
        assert ledger_store.get_balance("acct-1") == 0

    def test_negative_balance_rejected(self, ledger_store):
        with pytest.raises(ValueError):
            ledger_store.set_balance("acct-1", -1)

    def test_swap_requires_expected_value(self, ledger_store, job_store):
        _job(job_store)

        assert ledger_store.swap_job_paid_flag("job-1", expected=True, new=False) is False
        assert ledger_store.swap_job_paid_flag("job-1", expected=False, new=True) is True
        assert ledger_store.swap_job_paid_flag("job-1", expected=False, new=True) is False
