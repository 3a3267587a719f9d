"""Manifest writing logic."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Iterable, Optional, Sequence

from . import AlignMode, AlignmentConfig, CellRect, ChromaKeyParams, ExportSettings, FrameInfo, SliceSettings
from ..utils import file_tools

logger = logging.getLogger(__name__)


def build_manifest(
    infos: Iterable[FrameInfo],
    settings: ExportSettings,
    columns: int,
    rows: int,
    slice_settings: Optional[SliceSettings] = None,
    cells: Sequence[Optional[CellRect]] = (),
    alignment: Optional[AlignmentConfig] = None,
    chroma: Optional[ChromaKeyParams] = None,
) -> dict:
    """JSON-ready description of where each frame came from and where it landed."""

    frames_payload = {}
    for info in infos:
        cell = cells[info.index] if info.index < len(cells) else None
        frames_payload[f"frame_{info.index:04d}"] = {
            "x": info.x,
            "y": info.y,
            "width": info.width,
            "height": info.height,
            "offsetX": info.offset_x,
            "offsetY": info.offset_y,
            "scale": info.scale,
            "empty": info.empty,
            "source": asdict(cell) if cell is not None else None,
        }

    meta: dict = {
        "columns": columns,
        "rows": rows,
        "padding": settings.padding,
        "spritesheet": str(settings.output_path.with_suffix(".png")),
    }
    if slice_settings is not None:
        meta["slice"] = {
            "cols": slice_settings.cols,
            "rows": slice_settings.rows,
            "paddingX": slice_settings.padding_x,
            "paddingY": slice_settings.padding_y,
            "paddingLeft": slice_settings.padding_left,
            "paddingRight": slice_settings.padding_right,
            "paddingTop": slice_settings.padding_top,
            "paddingBottom": slice_settings.padding_bottom,
            "shiftX": slice_settings.shift_x,
            "shiftY": slice_settings.shift_y,
            "sliceMode": slice_settings.slice_mode,
        }
    if alignment is not None:
        meta["alignment"] = {
            "alignMode": AlignMode(alignment.align_mode).value,
            "temporalSmoothing": alignment.temporal_smoothing,
            "anchorFrame": alignment.anchor_frame,
        }
    if chroma is not None:
        meta["chromaKey"] = {"key": list(chroma.key.as_tuple()), "fuzzPercent": chroma.fuzz_percent}

    return {"source": str(settings.sheet_path), "frames": frames_payload, "meta": meta}


def write_manifest(infos: Iterable[FrameInfo], settings: ExportSettings, columns: int, rows: int, **extra) -> Path:
    """Create a JSON manifest next to the output sheet (or at ``manifest_path``)."""

    if not settings.generate_manifest:
        raise ValueError("Manifest generation requested without flag set.")

    manifest_path = (settings.manifest_path or settings.output_path).with_suffix(".json")
    file_tools.ensure_directory(manifest_path.parent)
    manifest = build_manifest(infos, settings, columns, rows, **extra)
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    logger.info("Wrote manifest to %s", manifest_path)
    return manifest_path
