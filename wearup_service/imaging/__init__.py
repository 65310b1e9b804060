# Imaging module
from wearup_service.imaging.fetcher import ImageFetcher
from wearup_service.imaging.compositor import CanvasCompositor
from wearup_service.imaging.reference_canvas import ReferenceCanvasBuilder, normalize_aspect_ratio
