"""
Typed inputs and results for the compositor and reference canvas builder.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple

# Logical size of one outfit item on the client canvas
BASE_ITEM_WIDTH = 110
BASE_ITEM_HEIGHT = 120

DEFAULT_BACKGROUND_COLOR = "#FFFFFF"
DEFAULT_BACKGROUND_OPACITY = 0.2


@dataclass(frozen=True)
class Layer:
    """One positioned image on the outfit canvas."""
    layer_id: str
    image_url: Optional[str]
    x: float
    y: float
    scale: float = 1.0
    rotation: float = 0.0
    z_index: float = 0.0
    rounded: bool = True


@dataclass(frozen=True)
class BackgroundSettings:
    """Solid color or a faded background image."""
    color: str = DEFAULT_BACKGROUND_COLOR
    image_url: Optional[str] = None
    opacity: float = DEFAULT_BACKGROUND_OPACITY

    def rgba(self) -> Tuple[int, int, int, int]:
        hex_value = self.color.lstrip("#")
        r, g, b = (int(hex_value[i:i + 2], 16) for i in (0, 2, 4))
        return (r, g, b, 255)


@dataclass(frozen=True)
class CanvasSpec:
    """Server canvas size and the client canvas it mirrors."""
    width: int = 512
    height: int = 512
    resolution_scale: int = 3
    client_width: float = 256.0
    client_height: float = 256.0

    @property
    def aspect_ratio(self) -> str:
        return f"{self.width / self.height:.3f}"

    @property
    def client_aspect_ratio(self) -> str:
        return f"{self.client_width / self.client_height:.3f}"

    def aspect_matches(self) -> bool:
        return self.aspect_ratio == self.client_aspect_ratio


@dataclass
class CompositionResult:
    """A flattened outfit cover and where it was stored."""
    image_url: str
    file_name: str
    image: bytes = field(repr=False)
    layers_rendered: int = 0
    layers_dropped: int = 0

    def to_dict(self) -> dict:
        return {
            "imageUrl": self.image_url,
            "fileName": self.file_name,
            "layersRendered": self.layers_rendered,
            "layersDropped": self.layers_dropped,
        }


@dataclass(frozen=True)
class ReferenceItem:
    """An item image with the label burned into the labeled canvas."""
    image_url: str
    label: str


@dataclass
class ReferenceCanvasResult:
    """Labeled and unlabeled renders of the same reference layout."""
    labeled_url: str
    unlabeled_url: str
    columns: int
    rows: int
    items_rendered: int
    labeled_image: bytes = field(repr=False, default=b"")
    unlabeled_image: bytes = field(repr=False, default=b"")

    def to_dict(self) -> dict:
        return {
            "labeledUrl": self.labeled_url,
            "unlabeledUrl": self.unlabeled_url,
            "grid": {"columns": self.columns, "rows": self.rows},
            "itemsRendered": self.items_rendered,
        }
