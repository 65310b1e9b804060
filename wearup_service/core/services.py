"""
Service container.

One instance per app, created in the lifespan handler and stored on
app.state.services. Tests build their own with fakes.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from wearup_service.config import Settings
from wearup_service.core.storage import LocalStorage, SupabaseStorage
from wearup_service.db import (
    connect,
    MongoJobStore,
    MongoLedgerStore,
    MongoCoverStore,
    MemoryJobStore,
    MemoryLedgerStore,
    MemoryCoverStore,
)
from wearup_service.imaging import CanvasCompositor, ImageFetcher, ReferenceCanvasBuilder
from wearup_service.jobs import JobService, ReplicateJobProvider

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    storage: Any
    fetcher: Any
    compositor: CanvasCompositor
    reference_builder: ReferenceCanvasBuilder
    job_service: JobService
    db: Optional[Any] = None

    @property
    def local_storage(self) -> Optional[LocalStorage]:
        return self.storage if isinstance(self.storage, LocalStorage) else None

    async def aclose(self):
        await self.fetcher.aclose()


def build_storage(settings: Settings):
    if settings.storage_backend == "supabase":
        if settings.has_supabase():
            return SupabaseStorage.from_credentials(settings.supabase_url, settings.supabase_key)
        logger.warning("Supabase backend selected but credentials missing, using local storage")

    storage = LocalStorage(settings.data_dir)
    storage.ensure_directories()
    return storage


def build_stores(settings: Settings):
    """Return (db, jobs, ledger, covers), falling back to memory when MongoDB is down."""
    db = connect(settings.mongo_uri, settings.mongo_db_name) if settings.mongo_enabled else None

    if db is not None:
        return db, MongoJobStore(db), MongoLedgerStore(db), MongoCoverStore(db)

    logger.warning("MongoDB unavailable, using in-memory stores (state is lost on restart)")
    jobs = MemoryJobStore()
    return None, jobs, MemoryLedgerStore(jobs), MemoryCoverStore()


def build_services(settings: Settings) -> Services:
    storage = build_storage(settings)
    db, jobs, ledger, covers = build_stores(settings)
    fetcher = ImageFetcher(
        timeout=settings.fetch_timeout,
        pool_size=settings.fetch_pool_size,
        max_bytes=settings.fetch_max_bytes,
    )

    if not settings.has_replicate():
        logger.warning("REPLICATE_API_TOKEN not set, job submissions will fail")

    return Services(
        settings=settings,
        storage=storage,
        fetcher=fetcher,
        compositor=CanvasCompositor(fetcher, storage, covers, bucket=settings.covers_bucket),
        reference_builder=ReferenceCanvasBuilder(
            fetcher, storage, bucket=settings.reference_bucket, cell_size=settings.reference_cell_size
        ),
        job_service=JobService(
            ReplicateJobProvider(api_token=settings.replicate_api_token), jobs, ledger, settings
        ),
        db=db,
    )
