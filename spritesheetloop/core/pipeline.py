"""End-to-end run: key, slice, align, extract and pack a loop from one sheet."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, UnidentifiedImageError

from . import (
    AlignmentConfig,
    ChromaKeyParams,
    ExportSettings,
    FrameOverride,
    PixelBuffer,
    ProcessingOutcome,
    SliceSettings,
)
from . import alignment, chroma_key, cropper, grid, manifest_writer, spritesheet_builder
from .errors import ProcessingError
from ..utils import validators

logger = logging.getLogger(__name__)


def load_sheet(path: Path) -> PixelBuffer:
    """Decode an image file into an RGBA buffer."""

    validators.validate_image_path(path)
    try:
        with Image.open(path) as image:
            buffer = PixelBuffer.from_image(image)
    except (OSError, UnidentifiedImageError) as exc:
        raise ProcessingError(f"Could not read image {path}: {exc}") from exc
    logger.info("Loaded %s (%sx%s)", path, buffer.width, buffer.height)
    return buffer


def key_sheet(
    buffer: PixelBuffer,
    params: ChromaKeyParams,
    worker=None,
    on_progress: Optional[Callable[[int], None]] = None,
) -> PixelBuffer:
    """Remove the key colour, through ``worker`` when one is given."""

    if worker is None:
        return chroma_key.segment(buffer, params, on_progress=on_progress)
    return worker.process(buffer, params, on_progress=on_progress).result()


def resolve_slices(buffer: PixelBuffer, settings: SliceSettings, optimize: bool = False) -> SliceSettings:
    if not optimize:
        return settings
    return grid.optimize_slice_settings(buffer, settings.cols, settings.rows)


def run_loop(
    settings: ExportSettings,
    slice_settings: SliceSettings,
    alignment_config: Optional[AlignmentConfig] = None,
    chroma: Optional[ChromaKeyParams] = None,
    scale: float = 1.0,
    optimize: bool = False,
    refine: bool = True,
    worker=None,
) -> ProcessingOutcome:
    """Perform the full pipeline for a single sheet."""

    validators.validate_grid(slice_settings.cols, slice_settings.rows)
    validators.validate_scale(scale)
    buffer = load_sheet(settings.sheet_path)
    if chroma is not None:
        buffer = key_sheet(buffer, chroma, worker)

    slice_settings = resolve_slices(buffer, slice_settings, optimize)
    cells = grid.cell_rects(buffer.width, buffer.height, slice_settings)
    if not any(cell is not None for cell in cells):
        raise ProcessingError(
            f"No usable cells for a {slice_settings.cols}x{slice_settings.rows} grid on "
            f"{buffer.width}x{buffer.height}"
        )

    if alignment_config is not None:
        overrides = alignment.auto_align(buffer, cells, scale, alignment_config, refine=refine)
    else:
        overrides = {i: FrameOverride(scale=scale) for i in range(len(cells))}

    frames = cropper.extract_frames(buffer, slice_settings, overrides)
    sheet_path, _, infos = spritesheet_builder.build_spritesheet(frames, settings, overrides)

    frame_paths: list[Path] = []
    if settings.frames_dir is not None:
        frame_paths = spritesheet_builder.write_frames(frames, settings.frames_dir, settings.output_pattern)

    animation_path = None
    if settings.animation_path is not None:
        animation_path = spritesheet_builder.build_animation(frames, settings.animation_path, settings.fps)

    manifest_path = None
    if settings.generate_manifest:
        columns, rows = spritesheet_builder._resolve_grid(len(frames), settings.columns, settings.rows)
        manifest_path = manifest_writer.write_manifest(
            infos,
            settings,
            columns,
            rows,
            slice_settings=slice_settings,
            cells=cells,
            alignment=alignment_config,
            chroma=chroma,
        )

    return ProcessingOutcome(
        spritesheet_path=sheet_path,
        manifest_path=manifest_path,
        frame_paths=frame_paths,
        animation_path=animation_path,
    )
