"""Loop strip composition using Pillow."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Mapping, Optional, Sequence

from PIL import Image

from . import ExportSettings, FrameInfo, FrameOverride, override_for
from ..utils import file_tools

logger = logging.getLogger(__name__)

DEFAULT_ANIMATION_FPS = 24
# Clear each frame before the next one: GIF "restore to background", APNG "dispose to background".
ANIMATION_DISPOSAL = {".gif": 2, ".png": 1}


def _resolve_grid(frame_count: int, columns: int | None, rows: int | None) -> tuple[int, int]:
    """Compute grid layout; prefer provided values."""

    if columns and rows:
        return columns, rows
    if columns:
        return columns, math.ceil(frame_count / columns)
    if rows:
        return math.ceil(frame_count / rows), rows

    # Single horizontal strip by default
    return max(1, frame_count), 1


def _centred(frame: Image.Image, width: int, height: int) -> tuple[int, int]:
    return (width - frame.width) // 2, (height - frame.height) // 2


def frame_size(frames: Sequence[Optional[Image.Image]]) -> tuple[int, int]:
    """Largest frame dimensions; every cell of the output uses this size."""

    sizes = [frame.size for frame in frames if frame is not None]
    if not sizes:
        raise ValueError("No frames provided to pack.")
    return max(w for w, _ in sizes), max(h for _, h in sizes)


def compose_sheet(
    frames: Sequence[Optional[Image.Image]],
    settings: ExportSettings,
    overrides: Optional[Mapping[int, FrameOverride]] = None,
) -> tuple[Image.Image, list[FrameInfo]]:
    """Pack aligned frames into a grid; missing frames leave a blank cell."""

    columns, rows = _resolve_grid(len(frames), settings.columns, settings.rows)
    if columns * rows < len(frames):
        raise ValueError(f"A {columns}x{rows} grid cannot hold {len(frames)} frames")

    frame_width, frame_height = frame_size(frames)
    pad = max(0, settings.padding)
    cell_w = frame_width + pad
    cell_h = frame_height + pad
    bg = settings.background_color or (0, 0, 0, 0)
    sheet = Image.new("RGBA", (columns * cell_w - pad, rows * cell_h - pad), bg)

    overrides = overrides or {}
    infos: list[FrameInfo] = []
    for idx, frame in enumerate(frames):
        x = (idx % columns) * cell_w
        y = (idx // columns) * cell_h
        override = override_for(overrides, idx)
        if frame is not None:
            # Centre smaller frames (inferred cells may differ in size).
            left, top = _centred(frame, frame_width, frame_height)
            sheet.alpha_composite(frame.convert("RGBA"), (x + left, y + top))
        infos.append(
            FrameInfo(
                index=idx,
                width=frame_width,
                height=frame_height,
                x=x,
                y=y,
                offset_x=override.offset_x,
                offset_y=override.offset_y,
                scale=override.scale,
                empty=frame is None,
            )
        )
    return sheet, infos


def build_spritesheet(
    frames: Sequence[Optional[Image.Image]],
    settings: ExportSettings,
    overrides: Optional[Mapping[int, FrameOverride]] = None,
) -> tuple[Path, Image.Image, list[FrameInfo]]:
    """Pack frames into the output sheet and persist it to disk."""

    output_path = settings.output_path.with_suffix(".png")
    file_tools.ensure_directory(output_path.parent)
    sheet, infos = compose_sheet(frames, settings, overrides)
    sheet.save(output_path)
    logger.info("Wrote loop sheet (%s frames, %sx%s) to %s", len(infos), sheet.width, sheet.height, output_path)
    return output_path, sheet, infos


def write_frames(
    frames: Sequence[Optional[Image.Image]],
    directory: Path,
    pattern: Optional[str] = None,
) -> list[Path]:
    """Save each extracted frame as its own PNG; missing frames are skipped."""

    file_tools.ensure_directory(directory)
    paths = []
    for idx, frame in enumerate(frames):
        if frame is None:
            logger.debug("Frame %s has no pixels; not written", idx)
            continue
        path = directory / file_tools.frame_filename(idx, pattern)
        frame.save(path)
        paths.append(path)
    logger.info("Wrote %s frames to %s", len(paths), directory)
    return paths


def build_animation(
    frames: Sequence[Optional[Image.Image]],
    path: Path,
    fps: float = DEFAULT_ANIMATION_FPS,
    loop: int = 0,
) -> Path:
    """Write the frames as an animated GIF or APNG, chosen by ``path``'s suffix.

    Every frame is centred on a canvas of the largest frame size; missing
    frames play as a blank frame. ``loop=0`` repeats forever.
    """

    suffix = path.suffix.lower()
    if suffix not in ANIMATION_DISPOSAL:
        raise ValueError(f"Unsupported animation format: {path.suffix or '<none>'} (use .gif or .png)")
    if fps <= 0:
        raise ValueError("FPS must be greater than zero")

    frame_width, frame_height = frame_size(frames)
    canvases = []
    for frame in frames:
        canvas = Image.new("RGBA", (frame_width, frame_height), (0, 0, 0, 0))
        if frame is not None:
            canvas.alpha_composite(frame.convert("RGBA"), _centred(frame, frame_width, frame_height))
        canvases.append(canvas)

    duration = round(1000 / fps)
    file_tools.ensure_directory(path.parent)
    canvases[0].save(
        path,
        save_all=True,
        append_images=canvases[1:],
        duration=duration,
        loop=loop,
        disposal=ANIMATION_DISPOSAL[suffix],
    )
    logger.info("Wrote %s-frame animation at %.4g fps (%s ms/frame) to %s", len(canvases), fps, duration, path)
    return path
