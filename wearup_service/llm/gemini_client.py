"""
Gemini Client
Turns a labeled reference canvas into a generation prompt.
"""
import asyncio
import io
import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"
MAX_PROMPT_CHARS = 2000

CAPTION_PROMPT = """You are a fashion photography director.

The image is a reference board. The panel labeled MAIN SUBJECT is the person or
product to feature; every other labeled panel is an item that must appear in
the final photo.

Write one English prompt for an image generation model that shows the main
subject wearing or presenting all labeled items together in a single editorial
photo. Describe garments by color, material and cut. Do not mention the board,
the panels or the labels. Never use brand names. Avoid words like transparent,
see-through, revealing or provocative.
{user_prompt}
Return only the prompt text."""


def is_configured(api_key: Optional[str]) -> bool:
    """Check if a Gemini API key is available."""
    return bool(api_key)


def _generate(image_bytes: bytes, prompt: str, api_key: str, model_name: str) -> str:
    import google.generativeai as genai
    from PIL import Image

    genai.configure(api_key=api_key)
    model = genai.GenerativeModel(model_name)
    response = model.generate_content([prompt, Image.open(io.BytesIO(image_bytes))])
    return response.text.strip()


async def describe_reference_canvas(
    image_bytes: bytes,
    api_key: Optional[str],
    user_prompt: Optional[str] = None,
    model_name: str = DEFAULT_MODEL
) -> Optional[str]:
    """
    Caption the labeled reference canvas.

    Args:
        image_bytes: Labeled canvas (JPEG)
        api_key: Gemini API key
        user_prompt: Extra direction from the user, woven into the caption
        model_name: Gemini model

    Returns:
        Generation prompt, or None on failure
    """
    if not is_configured(api_key):
        return None

    extra = f"\nUser direction: {user_prompt}\n" if user_prompt else ""
    prompt = CAPTION_PROMPT.format(user_prompt=extra)

    try:
        logger.info("Calling Gemini for reference caption...")
        text = await asyncio.to_thread(_generate, image_bytes, prompt, api_key, model_name)
    except Exception as e:
        logger.warning(f"Gemini error (non-fatal): {e}")
        return None

    if not text:
        return None
    if len(text) > MAX_PROMPT_CHARS:
        text = text[:MAX_PROMPT_CHARS]

    logger.info(f"Gemini caption: {text[:100]}...")
    return text
