"""
Reference Canvas Builder
Lays out a main subject and its items on one grid for image generation.

    +-----------+------+------+
    |           | item | item |
    |   main    |------|------|
    |  subject  | item | item |
    |           |------|------|
    |-----------| item |      |
    |   label   |------|      |
    +-----------+------+------+

The same layout is rendered twice: labeled (for captioning) and plain
(for the generation model).
"""
import asyncio
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from wearup_service.core.errors import LayerFetchError, StorageDeleteError, StorageUploadError
from wearup_service.core.models import ReferenceCanvasResult, ReferenceItem
from wearup_service.imaging import transforms
from wearup_service.observability import increment

logger = logging.getLogger(__name__)

MAX_ITEMS = 12
MAIN_LABEL = "MAIN SUBJECT"

# (columns, rows) by item count
GRID_LAYOUTS = {
    1: (1, 1),
    2: (1, 2),
    3: (2, 2),
    4: (2, 2),
    5: (2, 3),
    6: (2, 3),
    7: (3, 3),
    8: (3, 3),
    9: (3, 3),
    10: (3, 4),
    11: (3, 4),
    12: (3, 4),
}

SUPPORTED_ASPECT_RATIOS = ("1:1", "4:3", "3:4", "16:9", "9:16", "21:9")
DEFAULT_ASPECT_RATIO = "9:16"

BACKGROUND = (255, 255, 255, 255)
LABEL_BAR_COLOR = (0, 0, 0, 160)
LABEL_TEXT_COLOR = (255, 255, 255, 255)
FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "arial.ttf",
)


def grid_for(count: int) -> Tuple[int, int]:
    """Grid (columns, rows) for an item count, capped at MAX_ITEMS."""
    if count <= 0:
        return 0, 1
    return GRID_LAYOUTS[min(count, MAX_ITEMS)]


def normalize_aspect_ratio(ratio: Optional[str]) -> str:
    """Snap a W:H string to the closest supported aspect ratio."""
    if not ratio or ":" not in ratio:
        return DEFAULT_ASPECT_RATIO
    if ratio in SUPPORTED_ASPECT_RATIOS:
        return ratio

    try:
        width, height = (float(part) for part in ratio.split(":", 1))
    except ValueError:
        return DEFAULT_ASPECT_RATIO
    if width <= 0 or height <= 0:
        return DEFAULT_ASPECT_RATIO

    target = width / height

    def distance(candidate: str) -> float:
        w, h = candidate.split(":")
        return abs(target - int(w) / int(h))

    return min(SUPPORTED_ASPECT_RATIOS, key=distance)


def load_font(size: int):
    for name in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default()


@dataclass(frozen=True)
class Cell:
    """Image area plus the label bar under it, in canvas pixels."""
    left: int
    top: int
    width: int
    image_height: int
    label_height: int

    @property
    def image_box(self) -> Tuple[int, int]:
        return self.width, self.image_height

    @property
    def label_rect(self) -> Tuple[int, int, int, int]:
        bar_top = self.top + self.image_height
        return self.left, bar_top, self.left + self.width, bar_top + self.label_height


@dataclass
class ReferenceLayout:
    size: Tuple[int, int]
    columns: int
    rows: int
    main: Optional[Cell]
    items: List[Cell]


def plan_layout(has_main: bool, item_count: int, cell_size: int) -> ReferenceLayout:
    """Pixel geometry for a main panel (optional) and item_count cells."""
    columns, rows = grid_for(item_count)
    label_height = max(24, cell_size // 8)
    padding = max(4, cell_size // 32)
    cell_height = cell_size + label_height

    grid_height = rows * cell_height + (rows - 1) * padding
    main_columns = 1 if has_main else 0
    width = (main_columns + columns) * cell_size + (main_columns + columns + 1) * padding
    height = grid_height + 2 * padding

    main = None
    grid_left = padding
    if has_main:
        main = Cell(padding, padding, cell_size, grid_height - label_height, label_height)
        grid_left += cell_size + padding

    items = []
    for index in range(min(item_count, MAX_ITEMS)):
        row, column = divmod(index, columns)
        items.append(Cell(
            grid_left + column * (cell_size + padding),
            padding + row * (cell_height + padding),
            cell_size,
            cell_size,
            label_height,
        ))

    return ReferenceLayout((width, height), columns, rows, main, items)


def _fit_text(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> str:
    while text:
        left, _, right, _ = draw.textbbox((0, 0), text, font=font)
        if right - left <= max_width:
            return text
        text = text[:-1]
    return text


def render(
    layout: ReferenceLayout,
    placed: List[Tuple[Cell, Image.Image, str]],
    labeled: bool
) -> Image.Image:
    """Draw contained images into their cells, optionally with label bars."""
    canvas = Image.new("RGBA", layout.size, BACKGROUND)

    for cell, image, _ in placed:
        canvas.alpha_composite(transforms.fit_contain(image, cell.image_box), (cell.left, cell.top))

    if not labeled:
        return canvas

    overlay = Image.new("RGBA", layout.size, transforms.TRANSPARENT)
    draw = ImageDraw.Draw(overlay)
    font = load_font(max(12, placed[0][0].label_height // 2)) if placed else None

    for cell, _, label in placed:
        rect = cell.label_rect
        draw.rectangle(rect, fill=LABEL_BAR_COLOR)
        text = _fit_text(draw, label.upper(), font, cell.width - 8)
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        x = rect[0] + (cell.width - (right - left)) / 2 - left
        y = rect[1] + (cell.label_height - (bottom - top)) / 2 - top
        draw.text((x, y), text, font=font, fill=LABEL_TEXT_COLOR)

    return Image.alpha_composite(canvas, overlay)


def _safe_owner(owner_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]", "_", owner_id)[:64] or "anonymous"


class ReferenceCanvasBuilder:
    """Builds labeled and plain reference canvases and uploads both."""

    def __init__(self, fetcher, storage, bucket: str = "reference", cell_size: int = 512):
        self.fetcher = fetcher
        self.storage = storage
        self.bucket = bucket
        self.cell_size = cell_size

    async def build(
        self,
        main_image_url: Optional[str],
        items: List[ReferenceItem],
        owner_id: str,
        main_label: str = MAIN_LABEL
    ) -> ReferenceCanvasResult:
        """
        Raises:
            LayerFetchError: If neither the main subject nor any item loads
            StorageUploadError: If either upload fails
        """
        if len(items) > MAX_ITEMS:
            logger.warning(f"Reference canvas: {len(items)} items, using first {MAX_ITEMS}")
            items = items[:MAX_ITEMS]

        main_image, *item_images = await asyncio.gather(
            self._load(main_image_url),
            *(self._load(item.image_url) for item in items)
        )

        loaded = [(item, image) for item, image in zip(items, item_images) if image is not None]
        if main_image is None and not loaded:
            raise LayerFetchError("No reference image could be loaded")

        if main_image_url and main_image is None:
            logger.warning("Main subject failed to load, building from items only")

        layout = plan_layout(main_image is not None, len(loaded), self.cell_size)

        placed = []
        if layout.main is not None:
            placed.append((layout.main, main_image, main_label))
        placed.extend((cell, image, item.label) for cell, (item, image) in zip(layout.items, loaded))

        def _render_both() -> Tuple[bytes, bytes]:
            labeled = transforms.encode_jpeg(render(layout, placed, labeled=True), quality=90)
            plain = transforms.encode_jpeg(render(layout, placed, labeled=False), quality=90)
            return labeled, plain

        labeled_data, plain_data = await asyncio.to_thread(_render_both)

        suffix = f"{_safe_owner(owner_id)}_{int(time.time() * 1000)}_{secrets.token_hex(4)}.jpg"
        labeled_key = f"reference_labeled_{suffix}"
        labeled_url = await self.storage.upload(self.bucket, labeled_key, labeled_data, "image/jpeg")
        try:
            plain_url = await self.storage.upload(self.bucket, f"reference_plain_{suffix}", plain_data, "image/jpeg")
        except StorageUploadError:
            await self._discard(labeled_key)
            raise

        increment("reference_canvases")
        logger.info(
            f"✓ Reference canvas: {layout.columns}x{layout.rows} grid, "
            f"{len(loaded)}/{len(items)} items, main={'yes' if layout.main else 'no'}"
        )

        return ReferenceCanvasResult(
            labeled_url=labeled_url,
            unlabeled_url=plain_url,
            columns=layout.columns,
            rows=layout.rows,
            items_rendered=len(loaded),
            labeled_image=labeled_data,
            unlabeled_image=plain_data,
        )

    async def _load(self, url: Optional[str]) -> Optional[Image.Image]:
        if not url:
            return None
        try:
            data = await self.fetcher.fetch(url)
            return await asyncio.to_thread(transforms.decode_image, data)
        except LayerFetchError as e:
            logger.warning(f"Reference image dropped: {e}")
            return None

    async def _discard(self, key: str):
        """Remove a half-written canvas pair's first upload."""
        try:
            await self.storage.delete(self.bucket, key)
        except StorageDeleteError as e:
            logger.warning(f"Orphaned reference canvas {key} not removed: {e}")
