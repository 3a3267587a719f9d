"""Validation helpers for user inputs."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..core.errors import ValidationError


ALLOWED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}
ALIGN_MODES = {"core", "bounds", "mass"}
ANIMATION_EXTENSIONS = {".gif", ".png"}


def validate_image_path(path: Path) -> Path:
    """Ensure the sheet path exists and appears to be a supported format."""

    if not path:
        raise ValidationError("No image path provided")
    if not path.exists():
        raise ValidationError(f"Image not found: {path}")
    if path.suffix.lower() not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationError(f"Unsupported image format: {path.suffix or '<none>'}")
    return path


def validate_grid(columns: Optional[int], rows: Optional[int]) -> None:
    """Ensure grid dimensions are positive if provided."""

    if columns is not None and columns <= 0:
        raise ValidationError("Columns must be greater than zero")
    if rows is not None and rows <= 0:
        raise ValidationError("Rows must be greater than zero")


def validate_padding(**edges: Optional[float]) -> None:
    for name, value in edges.items():
        if value is not None and value < 0:
            raise ValidationError(f"{name} must be zero or greater")


def parse_color_tuple(value: str | None) -> Optional[tuple[int, int, int, int]]:
    """Parse an RGBA color string like '255,0,0,255'."""

    if value is None or value.strip() == "":
        return None
    parts = [p.strip() for p in value.split(",")]
    if len(parts) not in (3, 4):
        raise ValidationError("Color must be R,G,B[,A]")
    try:
        numbers = [int(p) for p in parts]
    except ValueError as exc:
        raise ValidationError("Color must be numeric R,G,B[,A]") from exc
    if len(numbers) == 3:
        numbers.append(255)
    if any(n < 0 or n > 255 for n in numbers):
        raise ValidationError("Color values must be between 0 and 255")
    return tuple(numbers)  # type: ignore


def parse_key_color(value: str) -> tuple[int, int, int]:
    """Accept a preset name ('magenta', 'green') or an 'R,G,B' string."""

    from ..core import CHROMA_KEY_PRESETS

    name = value.strip().lower()
    if name in CHROMA_KEY_PRESETS:
        return CHROMA_KEY_PRESETS[name].as_tuple()
    parsed = parse_color_tuple(value)
    if parsed is None:
        raise ValidationError("Chroma key color is required")
    return parsed[:3]


def validate_fuzz(value: float) -> None:
    """Fuzz is a percentage in (0, 100]."""

    if not 0 < value <= 100:
        raise ValidationError("Fuzz percent must be greater than 0 and at most 100")


def validate_smoothing(value: float) -> None:
    if not 0 <= value <= 1:
        raise ValidationError("Temporal smoothing must be between 0 and 1")


def validate_alignment(config, frame_total: int) -> None:
    """Check an AlignmentConfig against the number of frames being aligned."""

    mode = getattr(config.align_mode, "value", config.align_mode)
    if mode not in ALIGN_MODES:
        raise ValidationError(f"Align mode must be one of {sorted(ALIGN_MODES)}")
    validate_smoothing(config.temporal_smoothing)
    if frame_total and not 0 <= config.anchor_frame < frame_total:
        raise ValidationError(f"Anchor frame {config.anchor_frame} is outside 0..{frame_total - 1}")


def validate_scale(value: float) -> None:
    if not 0.25 <= value <= 1:
        raise ValidationError("Scale must be between 0.25 and 1")


def validate_animation_path(path: Path) -> Path:
    if path.suffix.lower() not in ANIMATION_EXTENSIONS:
        raise ValidationError(f"Animation must be .gif or .png (APNG), got {path.suffix or '<none>'}")
    return path


def validate_fps(value: float) -> None:
    """GIF delays bottom out at 10 ms, so more than 100 fps cannot be stored."""

    if not 0 < value <= 100:
        raise ValidationError("FPS must be greater than 0 and at most 100")
