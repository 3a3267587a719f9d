"""Core data model for sprite sheet keying, slicing and alignment."""

__all__ = [
    "PixelBuffer",
    "Color",
    "HSL",
    "Padding",
    "AutoOptimizedFlags",
    "SliceSettings",
    "CellRect",
    "CropRegion",
    "Offset",
    "FrameOverride",
    "AlignMode",
    "AlignmentConfig",
    "ChromaKeyParams",
    "DEFAULT_FRAME_OVERRIDE",
    "CHROMA_KEY_PRESETS",
    "DEFAULT_FUZZ_PERCENT",
    "ExportSettings",
    "FrameInfo",
    "ProcessingOutcome",
    "override_for",
    "merge_override",
]

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import numpy as np
from PIL import Image

from .errors import InvalidBufferError

OFFSET_LIMIT = 500.0
SCALE_MIN = 0.25
SCALE_MAX = 1.0


@dataclass
class PixelBuffer:
    """Interleaved RGBA bytes with their dimensions.

    The buffer is owned by whoever created it; core operations that mutate
    pixels (chroma keying) do so in place through ``as_array``.
    """

    width: int
    height: int
    data: bytearray

    def __post_init__(self) -> None:
        if not isinstance(self.data, bytearray):
            self.data = bytearray(self.data)
        if self.width <= 0 or self.height <= 0:
            raise InvalidBufferError(f"Buffer dimensions must be positive, got {self.width}x{self.height}")
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise InvalidBufferError(
                f"Buffer length {len(self.data)} does not match {self.width}x{self.height}x4 = {expected}"
            )

    def as_array(self) -> np.ndarray:
        """Writable HxWx4 uint8 view over ``data``."""

        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, 4)

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, bytearray(self.data))

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGBA", (self.width, self.height), bytes(self.data))

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        rgba = image.convert("RGBA")
        return cls(rgba.width, rgba.height, bytearray(rgba.tobytes()))

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        if array.ndim != 3 or array.shape[2] != 4:
            raise InvalidBufferError(f"Expected an HxWx4 array, got shape {array.shape}")
        height, width = array.shape[:2]
        return cls(width, height, bytearray(np.ascontiguousarray(array, dtype=np.uint8).tobytes()))


@dataclass(frozen=True)
class Color:
    """An opaque RGB colour, 0-255 per channel."""

    r: int
    g: int
    b: int

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)


@dataclass(frozen=True)
class HSL:
    """Hue in degrees [0, 360), saturation and lightness in [0, 1]."""

    h: float
    s: float
    l: float


@dataclass(frozen=True)
class Padding:
    left: float
    right: float
    top: float
    bottom: float


@dataclass
class AutoOptimizedFlags:
    """Which slice values were filled in by the optimiser rather than the user."""

    padding_x: bool = False
    padding_y: bool = False
    shift_x: bool = False
    shift_y: bool = False


@dataclass
class SliceSettings:
    """Grid description used to resolve cell rectangles on a sheet."""

    cols: int
    rows: int
    padding_x: float = 0
    padding_y: float = 0
    shift_x: float = 0
    shift_y: float = 0
    padding_left: Optional[float] = None
    padding_right: Optional[float] = None
    padding_top: Optional[float] = None
    padding_bottom: Optional[float] = None
    auto_optimized: AutoOptimizedFlags = field(default_factory=AutoOptimizedFlags)
    slice_mode: str = "equal"
    inferred_cell_rects: Optional[list["CellRect"]] = None


@dataclass(frozen=True)
class CellRect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class CropRegion:
    """Source rectangle sampled from the sheet for one frame."""

    sx: float
    sy: float
    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True)
class Offset:
    offset_x: float = 0.0
    offset_y: float = 0.0


@dataclass(frozen=True)
class FrameOverride:
    """Per-frame crop adjustment; missing entries mean the identity override."""

    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0

    def clamped(self) -> "FrameOverride":
        return FrameOverride(
            offset_x=min(OFFSET_LIMIT, max(-OFFSET_LIMIT, self.offset_x)),
            offset_y=min(OFFSET_LIMIT, max(-OFFSET_LIMIT, self.offset_y)),
            scale=min(SCALE_MAX, max(SCALE_MIN, self.scale)),
        )


DEFAULT_FRAME_OVERRIDE = FrameOverride()


def override_for(overrides: Mapping[int, FrameOverride], index: int) -> FrameOverride:
    """Return the override for ``index`` or the identity default."""

    return overrides.get(index, DEFAULT_FRAME_OVERRIDE)


def merge_override(
    overrides: Mapping[int, FrameOverride],
    index: int,
    offset_x: Optional[float] = None,
    offset_y: Optional[float] = None,
    scale: Optional[float] = None,
) -> dict[int, FrameOverride]:
    """Apply a single-index user patch and return a new mapping."""

    current = override_for(overrides, index)
    patch = {}
    if offset_x is not None:
        patch["offset_x"] = offset_x
    if offset_y is not None:
        patch["offset_y"] = offset_y
    if scale is not None:
        patch["scale"] = scale
    merged = dict(overrides)
    merged[index] = replace(current, **patch).clamped()
    return merged


class AlignMode(str, Enum):
    CORE = "core"
    BOUNDS = "bounds"
    MASS = "mass"


@dataclass
class AlignmentConfig:
    """User-facing knobs of the auto-alignment engine."""

    align_mode: AlignMode = AlignMode.CORE
    temporal_smoothing: float = 0.7
    anchor_frame: int = 0
    anchor_offset: Offset = field(default_factory=Offset)


@dataclass(frozen=True)
class ChromaKeyParams:
    key: Color
    fuzz_percent: float = 35.0


CHROMA_KEY_PRESETS = {
    "magenta": Color(255, 0, 255),
    "green": Color(0, 177, 64),
}
DEFAULT_FUZZ_PERCENT = 35.0


@dataclass
class ExportSettings:
    """Where and how an aligned loop is written."""

    sheet_path: Path
    output_path: Path
    columns: Optional[int] = None
    rows: Optional[int] = None
    padding: int = 0
    background_color: Optional[tuple[int, int, int, int]] = None
    frames_dir: Optional[Path] = None
    output_pattern: Optional[str] = None
    generate_manifest: bool = False
    manifest_path: Optional[Path] = None
    animation_path: Optional[Path] = None
    fps: float = 24.0


@dataclass
class FrameInfo:
    """Placement of one aligned frame in the output strip."""

    index: int
    width: int
    height: int
    x: int = 0
    y: int = 0
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0
    empty: bool = False


@dataclass
class ProcessingOutcome:
    """Result paths produced by an export run."""

    spritesheet_path: Path
    manifest_path: Optional[Path]
    frame_paths: list[Path] = field(default_factory=list)
    animation_path: Optional[Path] = None
