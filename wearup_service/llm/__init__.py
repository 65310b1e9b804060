# LLM module
from wearup_service.llm.gemini_client import describe_reference_canvas
