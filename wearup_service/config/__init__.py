# Config module
from wearup_service.config.settings import (
    get_settings,
    reload_settings,
    Settings,
    BillingPolicy,
    CHARGE_ON_SUBMIT,
    CHARGE_ON_SUCCESS,
)
