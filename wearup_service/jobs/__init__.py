# Jobs module
from wearup_service.jobs.status import JobStatus, TERMINAL_STATUSES
from wearup_service.jobs.poller import poll_until_terminal
from wearup_service.jobs.ledger import LedgerReconciler
from wearup_service.jobs.provider import ReplicateJobProvider
from wearup_service.jobs.service import JobService
