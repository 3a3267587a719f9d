"""Filesystem helpers."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def ensure_directory(path: Path) -> Path:
    """Create a directory if it does not exist."""

    path.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured directory exists: %s", path)
    return path


def default_output_path(sheet_path: Path, suffix: str = ".png") -> Path:
    """Return a default output path next to the source sheet."""

    if not suffix.startswith("."):
        suffix = "." + suffix
    return sheet_path.with_name(f"{sheet_path.stem}_loop{suffix}")


def frame_filename(index: int, pattern: str | None = None) -> str:
    """Format a per-frame filename using an optional pattern with {index}."""

    if pattern:
        return pattern.format(index=index)
    return f"frame_{index:04d}.png"
