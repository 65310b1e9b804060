# Observability module
from wearup_service.observability.logger import log_job_event, is_logging_enabled
from wearup_service.observability.metrics import (
    increment,
    record_job_outcome,
    get_metrics,
    reset_metrics,
)
