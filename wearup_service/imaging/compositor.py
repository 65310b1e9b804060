"""
Canvas Compositor
Flattens positioned outfit layers onto one cover image.

Pipeline:
1. Background (solid color, or image faded over white)
2. Layers sorted by z_index, fetched and transformed concurrently
3. Alpha-composite in z order, encode PNG
4. Replace the outfit's previous cover in storage
"""
import asyncio
import logging
import time
from typing import List, Optional, Sequence, Tuple

from PIL import Image

from wearup_service.core.errors import LayerFetchError, StorageDeleteError
from wearup_service.core.models import (
    BASE_ITEM_HEIGHT,
    BASE_ITEM_WIDTH,
    BackgroundSettings,
    CanvasSpec,
    CompositionResult,
    Layer,
)
from wearup_service.core.storage import file_name_from_url
from wearup_service.imaging import transforms
from wearup_service.observability import increment

logger = logging.getLogger(__name__)

COVER_PREFIX = "outfit_composed_"

# Largest contain box a single layer may ask for
MAX_LAYER_PIXELS = 64_000_000

# Pillow failures while transforming one layer
TRANSFORM_ERRORS = (ValueError, OverflowError, MemoryError, OSError)

RenderedLayer = Tuple[Image.Image, Tuple[int, int]]


def layer_box(layer: Layer, resolution_scale: int) -> Tuple[int, int]:
    """Pixel box a layer is contained into."""
    return (
        max(1, round(BASE_ITEM_WIDTH * resolution_scale * layer.scale)),
        max(1, round(BASE_ITEM_HEIGHT * resolution_scale * layer.scale)),
    )


def render_layer(data: bytes, layer: Layer, resolution_scale: int) -> RenderedLayer:
    """
    Decode and transform one layer. CPU bound, run in a worker thread.

    The returned offset keeps the layer centered on the spot an unscaled,
    unrotated item would occupy at (x, y).
    """
    box = layer_box(layer, resolution_scale)
    if box[0] * box[1] > MAX_LAYER_PIXELS:
        raise ValueError(f"Layer box {box[0]}x{box[1]} exceeds {MAX_LAYER_PIXELS} pixels")

    image = transforms.decode_image(data)
    image = transforms.fit_contain(image, box)

    if layer.rounded and resolution_scale >= 2:
        radius = transforms.corner_radius(resolution_scale, layer.scale)
        image = transforms.round_corners(image, radius)

    image = transforms.rotate_clockwise(image, layer.rotation)

    base_w = BASE_ITEM_WIDTH * resolution_scale
    base_h = BASE_ITEM_HEIGHT * resolution_scale
    left = layer.x * resolution_scale - (image.width - base_w) / 2
    top = layer.y * resolution_scale - (image.height - base_h) / 2
    return image, (round(left), round(top))


def overlaps_canvas(size: Tuple[int, int], rendered: RenderedLayer) -> bool:
    """True if any part of the placed layer lands on the canvas."""
    image, (left, top) = rendered
    return left < size[0] and top < size[1] and left + image.width > 0 and top + image.height > 0


def flatten(base: Image.Image, rendered: Sequence[RenderedLayer]) -> Image.Image:
    """Alpha-composite layers in order. Layers may hang off any edge."""
    canvas = base.copy()
    for image, offset in rendered:
        sheet = Image.new("RGBA", canvas.size, transforms.TRANSPARENT)
        sheet.paste(image, offset)
        canvas = Image.alpha_composite(canvas, sheet)
    return canvas


class CanvasCompositor:
    """Composes outfit covers and keeps one live cover per outfit."""

    def __init__(self, fetcher, storage, covers, bucket: str = "covers"):
        self.fetcher = fetcher
        self.storage = storage
        self.covers = covers
        self.bucket = bucket

    async def compose(
        self,
        layers: List[Layer],
        canvas: CanvasSpec,
        background: BackgroundSettings,
        entity_id: str
    ) -> CompositionResult:
        """
        Compose, encode and upload an outfit cover.

        Raises:
            CompositeEncodeError: If the final PNG cannot be produced
            StorageUploadError: If the upload fails
        """
        start = time.perf_counter()

        if canvas.aspect_matches():
            logger.info(f"Aspect ratio OK: {canvas.aspect_ratio} ({canvas.width}x{canvas.height})")
        else:
            logger.warning(
                f"Aspect ratio mismatch: server {canvas.aspect_ratio}, "
                f"client {canvas.client_aspect_ratio}"
            )

        base = await self._render_background(canvas, background)

        ordered = sorted(layers, key=lambda l: l.z_index)
        results = await asyncio.gather(
            *(self._load_layer(layer, canvas) for layer in ordered)
        )
        rendered = [r for r in results if r is not None]
        dropped = len(ordered) - len(rendered)

        flat = await asyncio.to_thread(flatten, base, rendered)
        data = await asyncio.to_thread(transforms.encode_png, flat)

        await self._delete_previous_cover(entity_id)

        file_name = f"{COVER_PREFIX}{entity_id}_{int(time.time() * 1000)}.png"
        url = await self.storage.upload(self.bucket, file_name, data, "image/png")
        self._record_cover(entity_id, url)

        increment("compositions")
        increment("layers_rendered", len(rendered))
        increment("layers_dropped", dropped)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"✓ Composed {entity_id}: {len(rendered)}/{len(ordered)} layers, "
            f"{len(data)} bytes in {elapsed_ms:.0f}ms"
        )

        return CompositionResult(
            image_url=url,
            file_name=file_name,
            image=data,
            layers_rendered=len(rendered),
            layers_dropped=dropped,
        )

    async def _render_background(self, canvas: CanvasSpec, background: BackgroundSettings) -> Image.Image:
        size = (canvas.width, canvas.height)
        solid = Image.new("RGBA", size, background.rgba())

        if not background.image_url:
            return solid

        try:
            data = await self.fetcher.fetch(background.image_url)
            image = await asyncio.to_thread(transforms.decode_image, data)
        except LayerFetchError as e:
            logger.warning(f"Background image unavailable, using solid color: {e}")
            return solid

        def _fade(img: Image.Image) -> Image.Image:
            return transforms.fade_over_white(transforms.cover_resize(img, size), background.opacity)

        try:
            return await asyncio.to_thread(_fade, image)
        except TRANSFORM_ERRORS as e:
            logger.warning(f"Background image transform failed, using solid color: {e}")
            return solid

    async def _load_layer(self, layer: Layer, canvas: CanvasSpec) -> Optional[RenderedLayer]:
        if not layer.image_url:
            logger.warning(f"Layer {layer.layer_id} has no image URL, skipped")
            return None

        try:
            data = await self.fetcher.fetch(layer.image_url)
            rendered = await asyncio.to_thread(render_layer, data, layer, canvas.resolution_scale)
        except LayerFetchError as e:
            logger.warning(f"Layer {layer.layer_id} dropped: {e}")
            return None
        except TRANSFORM_ERRORS as e:
            logger.warning(f"Layer {layer.layer_id} dropped, transform failed: {type(e).__name__}: {e}")
            return None

        if not overlaps_canvas((canvas.width, canvas.height), rendered):
            logger.warning(f"Layer {layer.layer_id} dropped, outside the canvas at {rendered[1]}")
            return None

        return rendered

    async def _delete_previous_cover(self, entity_id: str):
        try:
            previous_url = self.covers.get_cover_url(entity_id)
        except Exception as e:
            logger.warning(f"Cover lookup failed for {entity_id}: {e}")
            return

        file_name = file_name_from_url(previous_url)
        if not file_name or COVER_PREFIX not in file_name:
            return

        try:
            await self.storage.delete(self.bucket, file_name)
            logger.info(f"Previous cover removed: {file_name}")
        except StorageDeleteError as e:
            logger.warning(f"Previous cover not removed: {e}")

    def _record_cover(self, entity_id: str, url: str):
        try:
            self.covers.set_cover_url(entity_id, url)
        except Exception as e:
            logger.warning(f"Cover URL not recorded for {entity_id}: {e}")
