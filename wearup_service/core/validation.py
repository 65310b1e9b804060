"""
Request Validation Module
Turns raw JSON bodies into typed compositor and job inputs.
"""
import math
import re
import logging
from typing import Any, Dict, List, Optional, Tuple

from wearup_service.core.models import (
    Layer,
    BackgroundSettings,
    CanvasSpec,
    ReferenceItem,
    DEFAULT_BACKGROUND_COLOR,
    DEFAULT_BACKGROUND_OPACITY,
)

logger = logging.getLogger(__name__)

# Configuration
MAX_CANVAS_SIDE = 4096
MAX_RESOLUTION_SCALE = 8
MAX_LAYERS = 50
MAX_LAYER_SCALE = 8.0
MAX_POSITION = 10_000.0  # |x| and |y| in client canvas units
HEX_COLOR_PATTERN = re.compile(r"^#?[0-9a-fA-F]{6}$")


class ValidationError(Exception):
    """Custom exception for validation errors."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def _number(value: Any, name: str, errors: List[str], default: Optional[float] = None) -> Optional[float]:
    """Read a numeric field, recording an error instead of raising."""
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(f"{name} must be a number")
        return default
    try:
        number = float(value)
    except OverflowError:
        number = math.inf
    if not math.isfinite(number):
        errors.append(f"{name} must be finite")
        return default
    return number


def _image_source(value: Any) -> bool:
    return isinstance(value, str) and (
        value.startswith("http://")
        or value.startswith("https://")
        or value.startswith("data:image/")
    )


def validate_hex_color(color: Optional[str]) -> str:
    """
    Normalize a #RRGGBB color.

    Raises:
        ValidationError: If the color is not a 6-digit hex value
    """
    if not color:
        return DEFAULT_BACKGROUND_COLOR
    if not HEX_COLOR_PATTERN.match(color):
        raise ValidationError(f"Invalid color: {color}. Expected #RRGGBB")
    return "#" + color.lstrip("#").upper()


# ==================== OUTFIT COMPOSITION ====================

def parse_layers(items: Any) -> List[Layer]:
    """
    Validate outfit items into layers.

    Items without an image URL are kept; the compositor drops them.

    Raises:
        ValidationError: If the list is empty or an item is malformed
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    if len(items) > MAX_LAYERS:
        raise ValidationError(f"Too many items: {len(items)} (max {MAX_LAYERS})")

    errors: List[str] = []
    layers: List[Layer] = []

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            errors.append(f"items[{index}] must be an object")
            continue

        prefix = f"items[{index}]"
        x = _number(item.get("x"), f"{prefix}.x", errors)
        y = _number(item.get("y"), f"{prefix}.y", errors)
        if x is None or y is None:
            errors.append(f"{prefix} requires x and y")
            continue
        if abs(x) > MAX_POSITION or abs(y) > MAX_POSITION:
            errors.append(f"{prefix} position must be within +/-{MAX_POSITION:g}")

        scale = _number(item.get("scale"), f"{prefix}.scale", errors, default=1.0)
        if scale is not None and not 0 < scale <= MAX_LAYER_SCALE:
            errors.append(f"{prefix}.scale must be in (0, {MAX_LAYER_SCALE:g}]")

        rotation = _number(item.get("rotation"), f"{prefix}.rotation", errors, default=0.0)
        z_index = _number(item.get("zIndex"), f"{prefix}.zIndex", errors, default=0)

        image_url = item.get("imageUrl")
        if image_url and not _image_source(image_url):
            errors.append(f"{prefix}.imageUrl must be an http(s) or data:image URL")

        layers.append(Layer(
            layer_id=str(item.get("id", index)),
            image_url=image_url or None,
            x=x,
            y=y,
            scale=scale or 1.0,
            rotation=rotation or 0.0,
            z_index=z_index or 0.0,
            rounded=bool(item.get("rounded", True)),
        ))

    if errors:
        raise ValidationError("; ".join(errors), status_code=400)

    return layers


def parse_background(data: Any) -> BackgroundSettings:
    """Validate backgroundSettings; missing settings mean plain white."""
    if data is None:
        return BackgroundSettings()
    if not isinstance(data, dict):
        raise ValidationError("backgroundSettings must be an object")

    errors: List[str] = []
    color = validate_hex_color(data.get("backgroundColor"))

    image_url = data.get("backgroundImageUrl") or None
    if image_url and not _image_source(image_url):
        errors.append("backgroundImageUrl must be an http(s) or data:image URL")

    opacity = _number(data.get("backgroundOpacity"), "backgroundOpacity", errors,
                      default=DEFAULT_BACKGROUND_OPACITY)
    if opacity is not None and not 0.0 <= opacity <= 1.0:
        errors.append("backgroundOpacity must be between 0 and 1")

    if errors:
        raise ValidationError("; ".join(errors), status_code=400)

    return BackgroundSettings(color=color, image_url=image_url, opacity=opacity)


def parse_canvas(body: Dict[str, Any]) -> CanvasSpec:
    """Validate canvas and client canvas dimensions."""
    errors: List[str] = []

    width = _number(body.get("canvasWidth"), "canvasWidth", errors, default=512)
    height = _number(body.get("canvasHeight"), "canvasHeight", errors, default=512)
    scale = _number(body.get("resolutionScale"), "resolutionScale", errors, default=3)
    client_width = _number(body.get("clientCanvasWidth"), "clientCanvasWidth", errors, default=256)
    client_height = _number(body.get("clientCanvasHeight"), "clientCanvasHeight", errors, default=256)

    if errors:
        raise ValidationError("; ".join(errors), status_code=400)

    for name, value in (("canvasWidth", width), ("canvasHeight", height)):
        if value != int(value) or not 0 < value <= MAX_CANVAS_SIDE:
            errors.append(f"{name} must be an integer between 1 and {MAX_CANVAS_SIDE}")

    if scale != int(scale) or not 1 <= scale <= MAX_RESOLUTION_SCALE:
        errors.append(f"resolutionScale must be an integer between 1 and {MAX_RESOLUTION_SCALE}")

    if client_width <= 0 or client_height <= 0:
        errors.append("clientCanvasWidth and clientCanvasHeight must be positive")

    if errors:
        raise ValidationError("; ".join(errors), status_code=400)

    return CanvasSpec(
        width=int(width),
        height=int(height),
        resolution_scale=int(scale),
        client_width=client_width,
        client_height=client_height,
    )


def validate_compose_request(body: Any) -> Tuple[str, List[Layer], CanvasSpec, BackgroundSettings]:
    """
    Validate input for POST /outfits/compose.

    Returns:
        (outfit_id, layers, canvas, background)
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    outfit_id = body.get("outfitId")
    if not outfit_id or not isinstance(outfit_id, (str, int)):
        raise ValidationError("outfitId is required")

    layers = parse_layers(body.get("items"))
    canvas = parse_canvas(body)
    background = parse_background(body.get("backgroundSettings"))

    logger.debug(f"Compose request OK: outfit={outfit_id}, layers={len(layers)}")
    return str(outfit_id), layers, canvas, background


# ==================== REFERENCE CANVAS ====================

def validate_reference_request(body: Any) -> Tuple[Optional[str], List[ReferenceItem], str]:
    """
    Validate input for the reference canvas endpoints.

    Returns:
        (main_image_url, items, owner_id)
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    errors: List[str] = []

    main_url = body.get("mainImageUrl") or None
    if main_url and not _image_source(main_url):
        errors.append("mainImageUrl must be an http(s) or data:image URL")

    raw_items = body.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    items: List[ReferenceItem] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict) or not _image_source(raw.get("imageUrl")):
            errors.append(f"items[{index}].imageUrl must be an http(s) or data:image URL")
            continue
        label = str(raw.get("label") or f"ITEM {index + 1}").strip()
        items.append(ReferenceItem(image_url=raw["imageUrl"], label=label[:40]))

    if not main_url and not items:
        errors.append("mainImageUrl or at least one item is required")

    if errors:
        raise ValidationError("; ".join(errors), status_code=400)

    owner_id = str(body.get("userId") or "anonymous")
    return main_url, items, owner_id


# ==================== JOBS ====================

def validate_job_request(body: Any, allowed_kinds) -> Dict[str, Any]:
    """
    Validate input for POST /jobs.

    Returns:
        Dict with account_id, kind, model, params
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    errors: List[str] = []

    account_id = body.get("accountId")
    if not account_id:
        errors.append("accountId is required")

    kind = str(body.get("kind") or "").lower()
    if kind not in allowed_kinds:
        errors.append(f"kind must be one of: {', '.join(sorted(allowed_kinds))}")

    model = body.get("model")
    if not model or not isinstance(model, str):
        errors.append("model is required")

    params = body.get("input") or {}
    if not isinstance(params, dict):
        errors.append("input must be an object")

    if errors:
        raise ValidationError("; ".join(errors), status_code=400)

    return {
        "account_id": str(account_id),
        "kind": kind,
        "model": model,
        "params": params,
    }
