# Database module
from wearup_service.db.mongo import (
    connect,
    health_check,
    MongoJobStore,
    MongoLedgerStore,
    MongoCoverStore,
)
from wearup_service.db.memory import (
    MemoryJobStore,
    MemoryLedgerStore,
    MemoryCoverStore,
)
