"""
Image transform primitives (Pillow).

All functions take and return RGBA images unless noted.
"""
import io
import logging
from typing import Tuple

from PIL import Image, ImageChops, ImageDraw, ImageOps, UnidentifiedImageError

from wearup_service.core.errors import LayerFetchError, CompositeEncodeError

logger = logging.getLogger(__name__)

TRANSPARENT = (0, 0, 0, 0)
MAX_CORNER_RADIUS = 20
CORNER_RADIUS_PER_SCALE = 15
MIN_ROTATION_DEGREES = 1.0


def decode_image(data: bytes) -> Image.Image:
    """
    Decode bytes into an upright RGBA image.

    Raises:
        LayerFetchError: If the bytes are not a readable image
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()  # Force load to catch truncated images
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise LayerFetchError(f"Cannot decode image: {e}") from e

    image = ImageOps.exif_transpose(image)
    return image.convert("RGBA")


def contain_size(source: Tuple[int, int], box: Tuple[int, int]) -> Tuple[int, int]:
    """Largest size with the source aspect ratio that fits inside box."""
    src_w, src_h = source
    box_w, box_h = box
    ratio = min(box_w / src_w, box_h / src_h)
    return max(1, min(box_w, round(src_w * ratio))), max(1, min(box_h, round(src_h * ratio)))


def fit_contain(image: Image.Image, box: Tuple[int, int]) -> Image.Image:
    """
    Resize into box without cropping, centered on a transparent box-sized canvas.
    Enlarges small images.
    """
    size = contain_size(image.size, box)
    resized = image.resize(size, Image.Resampling.LANCZOS)

    canvas = Image.new("RGBA", box, TRANSPARENT)
    offset = ((box[0] - size[0]) // 2, (box[1] - size[1]) // 2)
    canvas.paste(resized, offset)
    return canvas


def corner_radius(resolution_scale: int, scale: float) -> int:
    return min(MAX_CORNER_RADIUS, round(CORNER_RADIUS_PER_SCALE * resolution_scale * scale))


def round_corners(image: Image.Image, radius: int) -> Image.Image:
    """Clip the image to a rounded rectangle of its own size."""
    if radius <= 0:
        return image

    mask = Image.new("L", image.size, 0)
    ImageDraw.Draw(mask).rounded_rectangle(
        (0, 0, image.width - 1, image.height - 1), radius=radius, fill=255
    )

    rounded = image.copy()
    rounded.putalpha(ImageChops.multiply(image.getchannel("A"), mask))
    return rounded


def rotate_clockwise(image: Image.Image, degrees: float) -> Image.Image:
    """
    Rotate clockwise, growing the canvas to fit; exposed corners are transparent.
    Rotations of one degree or less are ignored.
    """
    if abs(degrees) <= MIN_ROTATION_DEGREES:
        return image
    return image.rotate(
        -degrees,
        resample=Image.Resampling.BICUBIC,
        expand=True,
        fillcolor=TRANSPARENT,
    )


def cover_resize(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Resize to fill size exactly, cropping the overflow around the center."""
    return ImageOps.fit(image, size, Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def fade_over_white(image: Image.Image, opacity: float) -> Image.Image:
    """Blend image over white so it shows at the given opacity."""
    veil = Image.new("RGBA", image.size, (255, 255, 255, round(255 * (1 - opacity))))
    return Image.alpha_composite(image.convert("RGBA"), veil)


def encode_png(image: Image.Image, compress_level: int = 6) -> bytes:
    """
    Encode as PNG.

    Raises:
        CompositeEncodeError: If encoding fails
    """
    try:
        output = io.BytesIO()
        image.save(output, format="PNG", compress_level=compress_level)
        return output.getvalue()
    except (OSError, ValueError) as e:
        raise CompositeEncodeError(f"PNG encoding failed: {e}") from e


def encode_jpeg(image: Image.Image, quality: int = 90) -> bytes:
    """
    Encode as JPEG on a white background.

    Raises:
        CompositeEncodeError: If encoding fails
    """
    try:
        flat = Image.new("RGB", image.size, (255, 255, 255))
        flat.paste(image, mask=image.getchannel("A") if image.mode == "RGBA" else None)
        output = io.BytesIO()
        flat.save(output, format="JPEG", quality=quality)
        return output.getvalue()
    except (OSError, ValueError) as e:
        raise CompositeEncodeError(f"JPEG encoding failed: {e}") from e
