"""
WearUp Service v1.0.0
Outfit cover composition, reference canvases and billed generation jobs.

STATIC ASSET ROUTES:
--------------------
/assets/{bucket}/{key}   - Objects in local storage (covers, reference canvases)
                           Served by routes.py with path traversal protection.
                           With the Supabase backend, URLs point at Supabase instead.

API ROUTES:
-----------
/outfits/compose         - Flatten outfit layers into a cover image
/reference/*             - Reference canvases and reference-based generation
/jobs/*                  - Billed provider jobs
/accounts/*/balance      - Balance after reconciling pending jobs
/health, /metrics        - Health and monitoring
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wearup_service.app.routes import router, VERSION
from wearup_service.config import get_settings
from wearup_service.core.services import build_services
from wearup_service.observability import is_logging_enabled

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 50)
    logger.info(f"WearUp Service v{VERSION} Starting...")
    logger.info("=" * 50)

    settings = get_settings()
    services = build_services(settings)
    app.state.services = services

    logger.info(f"Storage: {type(services.storage).__name__}")
    logger.info(f"MongoDB: {'connected' if services.db is not None else 'disconnected'}")
    logger.info(f"Replicate: {'configured' if settings.has_replicate() else 'not configured'}")
    logger.info(f"Gemini: {'configured' if settings.has_gemini() else 'not configured'}")
    logger.info(f"Job event logging: {'enabled' if is_logging_enabled() else 'disabled'}")

    logger.info("✓ Service ready! http://localhost:8000")
    logger.info("✓ Metrics available at /metrics")
    logger.info("=" * 50)

    yield

    logger.info("Service shutting down...")
    await services.aclose()


app = FastAPI(
    title="WearUp Service",
    description="Outfit composition, reference canvases and billed generation jobs",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

app.include_router(router)
