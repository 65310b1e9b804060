"""
API Routes for WearUp Service
"""
import base64
import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse

from wearup_service.core.errors import (
    InsufficientBalanceError,
    JobContentPolicyError,
    JobNotFoundError,
    JobTerminalFailure,
    JobTimeoutError,
    LayerFetchError,
    WearUpError,
)
from wearup_service.core.services import Services
from wearup_service.core.validation import (
    ValidationError,
    validate_compose_request,
    validate_job_request,
    validate_reference_request,
)
from wearup_service.db import health_check as mongo_health_check
from wearup_service.imaging import normalize_aspect_ratio
from wearup_service.llm import describe_reference_canvas
from wearup_service.observability import get_metrics, is_logging_enabled

logger = logging.getLogger(__name__)

router = APIRouter()

VERSION = "1.0.0"

REFERENCE_JOB_KIND = "image"
DEFAULT_REFERENCE_PROMPT = (
    "Editorial fashion photo of the main subject wearing all of the items shown, "
    "natural light, full body, high detail."
)

# Error kinds surfaced with their own status; anything else is a generic 500
CLIENT_VISIBLE_ERRORS = (
    InsufficientBalanceError,
    JobTerminalFailure,
    JobTimeoutError,
    JobNotFoundError,
    LayerFetchError,
)


def get_services(request: Request) -> Services:
    """Service container created by the lifespan handler."""
    return request.app.state.services


def _http_error(e: Exception, context: str) -> HTTPException:
    """Translate a domain error into an HTTPException."""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=e.status_code, detail=e.message)

    if isinstance(e, JobContentPolicyError):
        logger.warning(f"{context}: content policy rejection ({e.job_id})")
        return HTTPException(
            status_code=e.status_code,
            detail={
                "error_type": "sensitive_content",
                "message": e.user_message,
                "job_id": e.job_id,
            },
        )

    if isinstance(e, InsufficientBalanceError):
        return HTTPException(
            status_code=e.status_code,
            detail={"message": e.message, "required": e.required, "available": e.available},
        )

    if isinstance(e, CLIENT_VISIBLE_ERRORS):
        logger.warning(f"{context}: {e.message}")
        return HTTPException(status_code=e.status_code, detail=e.message)

    if isinstance(e, WearUpError):
        logger.error(f"{context} failed: {e.message}")
    else:
        logger.exception(f"{context} failed: {e}")
    return HTTPException(status_code=500, detail="Internal server error")


def _provider_image_ref(url: str, data: bytes) -> str:
    """Public URLs go to the provider as-is; local ones are inlined."""
    if url.startswith(("http://", "https://")):
        return url
    return "data:image/jpeg;base64," + base64.b64encode(data).decode("ascii")


# ==================== PUBLIC ENDPOINTS ====================

@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Health check with observability info."""
    settings = services.settings
    metrics = get_metrics()

    return {
        "status": "ok",
        "version": VERSION,
        "storage": {
            "backend": type(services.storage).__name__,
            "covers_bucket": settings.covers_bucket,
            "reference_bucket": settings.reference_bucket,
        },
        "mongo": mongo_health_check(services.db),
        "replicate": {"configured": settings.has_replicate()},
        "gemini": {"configured": settings.has_gemini()},
        "observability": {
            "logging_enabled": is_logging_enabled(),
            "compositions": metrics["compositions"],
            "layer_drop_ratio": metrics["layer_drop_ratio"],
            "jobs_submitted": metrics["jobs_submitted"],
        },
    }


@router.get("/metrics")
async def get_metrics_endpoint():
    """Get detailed metrics for monitoring."""
    return JSONResponse(content=get_metrics())


# ==================== COMPOSITION ====================

@router.post("/outfits/compose")
async def compose_outfit(
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services)
):
    """
    Flatten outfit layers into one cover image.

    Body:
        outfitId, items[{id, imageUrl, x, y, scale, rotation, zIndex}],
        canvasWidth, canvasHeight, resolutionScale,
        clientCanvasWidth, clientCanvasHeight,
        backgroundSettings{backgroundColor, backgroundImageUrl, backgroundOpacity}

    Layers that fail to load are dropped; the cover is still produced.
    """
    try:
        outfit_id, layers, canvas, background = validate_compose_request(payload)
        result = await services.compositor.compose(layers, canvas, background, outfit_id)
    except Exception as e:
        raise _http_error(e, "Compose")

    return {"success": True, "data": result.to_dict()}


# ==================== REFERENCE CANVAS ====================

@router.post("/reference/canvas")
async def build_reference_canvas(
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services)
):
    """
    Build labeled and plain reference canvases.

    Body:
        mainImageUrl, items[{imageUrl, label}], userId
    """
    try:
        main_url, items, owner_id = validate_reference_request(payload)
        result = await services.reference_builder.build(main_url, items, owner_id)
    except Exception as e:
        raise _http_error(e, "Reference canvas")

    return {"success": True, "data": result.to_dict()}


@router.post("/reference/generate")
async def generate_from_reference(
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services)
):
    """
    Reference canvas -> caption -> billed image job -> wait for the result.

    Body:
        accountId, mainImageUrl, items[{imageUrl, label}], prompt,
        aspectRatio, model

    Content-policy rejections return 422 with error_type "sensitive_content".
    """
    job_service = services.job_service
    settings = services.settings

    try:
        account_id = payload.get("accountId")
        if not account_id:
            raise ValidationError("accountId is required")
        account_id = str(account_id)

        main_url, items, _ = validate_reference_request(payload)

        # Reject before doing any image work
        policy = job_service.policies[REFERENCE_JOB_KIND]
        job_service.reconciler.ensure_affordable(account_id, policy.cost)

        canvas = await services.reference_builder.build(main_url, items, account_id)

        user_prompt = payload.get("prompt") or None
        caption = await describe_reference_canvas(
            canvas.labeled_image, settings.gemini_api_key, user_prompt=user_prompt
        )
        prompt = caption or user_prompt or DEFAULT_REFERENCE_PROMPT

        params = {
            "prompt": prompt,
            "input_image": _provider_image_ref(canvas.unlabeled_url, canvas.unlabeled_image),
            "aspect_ratio": normalize_aspect_ratio(payload.get("aspectRatio")),
            "output_format": "jpg",
        }
        model = payload.get("model") or settings.reference_model

        job = await job_service.submit(account_id, REFERENCE_JOB_KIND, model, params)
        finished = await job_service.wait(job["job_id"])
    except Exception as e:
        raise _http_error(e, "Reference generation")

    return {
        "success": True,
        "data": {
            "job": finished,
            "canvas": canvas.to_dict(),
            "prompt": prompt,
        },
    }


# ==================== JOBS ====================

@router.post("/jobs")
async def submit_job(
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services)
):
    """
    Submit a billed job.

    Body:
        accountId, kind (training | video | image), model, input
    """
    job_service = services.job_service
    try:
        request = validate_job_request(payload, allowed_kinds=set(job_service.policies))
        job = await job_service.submit(
            request["account_id"], request["kind"], request["model"], request["params"]
        )
    except Exception as e:
        raise _http_error(e, "Job submit")

    return JSONResponse(content={"success": True, "data": job}, status_code=201)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, services: Services = Depends(get_services)):
    """Refresh a job from the provider and return it with progress."""
    try:
        job = await services.job_service.refresh(job_id)
    except Exception as e:
        raise _http_error(e, f"Job {job_id} refresh")

    return {"success": True, "data": job}


@router.post("/jobs/{job_id}/wait")
async def wait_for_job(
    job_id: str,
    max_attempts: Optional[int] = Query(None, ge=1, le=600),
    interval: Optional[float] = Query(None, ge=0, le=60),
    timeout: Optional[float] = Query(None, gt=0, le=3600),
    services: Services = Depends(get_services)
):
    """Poll a job until it finishes. 504 when the budget runs out."""
    try:
        job = await services.job_service.wait(
            job_id, max_attempts=max_attempts, interval=interval, timeout=timeout
        )
    except Exception as e:
        raise _http_error(e, f"Job {job_id} wait")

    return {"success": True, "data": job}


# ==================== ACCOUNTS ====================

@router.get("/accounts/{account_id}/balance")
async def get_balance(account_id: str, services: Services = Depends(get_services)):
    """Reconcile the account's pending jobs and return its balance."""
    try:
        summary = await services.job_service.refresh_account(account_id)
    except Exception as e:
        raise _http_error(e, f"Balance {account_id}")

    return {"success": True, "data": summary}


# ==================== STATIC ASSETS ====================

@router.get("/assets/{file_path:path}")
async def serve_asset(file_path: str, services: Services = Depends(get_services)):
    """
    Serve objects from local storage.

    With path traversal protection.
    """
    storage = services.local_storage
    if storage is None:
        raise HTTPException(status_code=404, detail="File not found")

    try:
        full_path = storage.get_file_path(file_path)
    except ValidationError as ve:
        raise HTTPException(status_code=ve.status_code, detail=ve.message)

    if not full_path.exists():
        raise HTTPException(status_code=404, detail="File not found")

    if not full_path.is_file():
        raise HTTPException(status_code=400, detail="Not a file")

    return FileResponse(full_path)
