"""Auto-alignment: per-frame crop offsets that keep the subject stationary."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Optional, Sequence

import numpy as np

from . import AlignMode, AlignmentConfig, CellRect, FrameOverride, Offset, PixelBuffer
from .cropper import crop_pixels, crop_region
from .smoothing import smooth
from .template_match import DEFAULT_MAX_DELTA, refine_offsets
from ..utils import validators

logger = logging.getLogger(__name__)

OPAQUE_ALPHA_MIN = 128
BACKGROUND_MATCH_DISTANCE = 24.0
TORSO_BAND = (0.25, 0.75)
TORSO_MIN_COVERAGE = 0.5

Anchor = tuple[float, float]


def _dominant_border_color(pixels: np.ndarray, inside: np.ndarray) -> Optional[np.ndarray]:
    ring = np.zeros(inside.shape, dtype=bool)
    ring[0, :] = ring[-1, :] = True
    ring[:, 0] = ring[:, -1] = True
    ring &= inside
    if not ring.any():
        return None
    tally = Counter(map(tuple, pixels[ring, :3].tolist()))
    color, _ = tally.most_common(1)[0]
    return np.array(color, dtype=np.float64)


def foreground_mask(pixels: np.ndarray, inside: np.ndarray) -> np.ndarray:
    """Opaque subject pixels of a crop.

    On a keyed crop this is simply alpha >= 128. A crop with no transparent
    pixel inside the sheet has not been keyed, so its dominant border colour
    is treated as background.
    """

    if pixels.size == 0:
        return np.zeros(pixels.shape[:2], dtype=bool)
    alpha = pixels[..., 3]
    mask = inside & (alpha >= OPAQUE_ALPHA_MIN)
    if (alpha[inside] == 0).any():
        return mask

    background = _dominant_border_color(pixels, inside)
    if background is None:
        return mask
    distance = np.sqrt(((pixels[..., :3].astype(np.float64) - background) ** 2).sum(axis=2))
    return mask & (distance > BACKGROUND_MATCH_DISTANCE)


def _mass_anchor(mask: np.ndarray, alpha: np.ndarray) -> Anchor:
    ys, xs = np.nonzero(mask)
    weights = alpha[ys, xs].astype(np.float64)
    total = weights.sum()
    return float((xs * weights).sum() / total), float((ys * weights).sum() / total)


def _bounds_anchor(mask: np.ndarray, alpha: np.ndarray) -> Anchor:
    ys, xs = np.nonzero(mask)
    return (xs.min() + xs.max()) / 2.0, (ys.min() + ys.max()) / 2.0


def _core_anchor(mask: np.ndarray, alpha: np.ndarray) -> Anchor:
    """Torso centroid.

    Only the middle band of the silhouette's height counts, and within it
    only columns covering at least half as many rows as the densest column,
    so limbs and held props drop out.
    """

    ys, _ = np.nonzero(mask)
    top, bottom = ys.min(), ys.max()
    span = bottom - top + 1
    rows = np.arange(mask.shape[0])
    in_band = (rows >= top + span * TORSO_BAND[0]) & (rows < top + span * TORSO_BAND[1])
    band = mask & in_band[:, None]
    coverage = band.sum(axis=0)
    if coverage.max() == 0:
        return _mass_anchor(mask, alpha)
    torso_ys, torso_xs = np.nonzero(band & (coverage >= coverage.max() * TORSO_MIN_COVERAGE)[None, :])
    return float(torso_xs.mean()), float(torso_ys.mean())


ANCHOR_STRATEGIES: dict[AlignMode, Callable[[np.ndarray, np.ndarray], Anchor]] = {
    AlignMode.CORE: _core_anchor,
    AlignMode.BOUNDS: _bounds_anchor,
    AlignMode.MASS: _mass_anchor,
}


def compute_anchor(pixels: np.ndarray, inside: np.ndarray, mode: AlignMode) -> Optional[Anchor]:
    """Anchor point in crop coordinates, or None when the crop has no subject."""

    mask = foreground_mask(pixels, inside)
    if not mask.any():
        return None
    return ANCHOR_STRATEGIES[AlignMode(mode)](mask, pixels[..., 3])


def frame_anchors(
    sheet: PixelBuffer | np.ndarray,
    cells: Sequence[Optional[CellRect]],
    scale: float,
    mode: AlignMode,
) -> list[Optional[Anchor]]:
    array = sheet.as_array() if isinstance(sheet, PixelBuffer) else sheet
    anchors: list[Optional[Anchor]] = []
    for cell in cells:
        if cell is None:
            anchors.append(None)
            continue
        pixels, inside = crop_pixels(array, crop_region(cell, 0.0, 0.0, scale))
        anchors.append(compute_anchor(pixels, inside, mode))
    return anchors


def _initial_offsets(
    anchors: Sequence[Optional[Anchor]], config: AlignmentConfig
) -> tuple[list[Offset], set[int]]:
    """Offsets that move the crop window, not the drawn image, by each anchor's displacement.

    Also returns the indices pinned to the anchor offset.
    """

    base = config.anchor_offset
    reference = anchors[config.anchor_frame]
    offsets: list[Offset] = []
    pinned: set[int] = set()
    for index, anchor in enumerate(anchors):
        if index == config.anchor_frame or anchor is None or reference is None:
            if index != config.anchor_frame:
                logger.debug("Frame %s has no alignment target; using anchor offset", index)
            offsets.append(base)
            pinned.add(index)
            continue
        offsets.append(
            Offset(
                offset_x=base.offset_x + anchor[0] - reference[0],
                offset_y=base.offset_y + anchor[1] - reference[1],
            )
        )
    return offsets, pinned


def _to_overrides(
    offsets: Sequence[Offset], pinned: set[int], base: Offset, scale: float
) -> dict[int, FrameOverride]:
    overrides = {}
    for index, offset in enumerate(offsets):
        if index in pinned:
            offset = base
        overrides[index] = FrameOverride(offset.offset_x, offset.offset_y, scale).clamped()
    return overrides


def align_all(
    sheet: PixelBuffer | np.ndarray,
    cells: Sequence[Optional[CellRect]],
    scale: float,
    config: AlignmentConfig,
) -> dict[int, FrameOverride]:
    """Anchor-based offsets for every frame, smoothed once.

    The anchor frame always receives ``config.anchor_offset``; frames whose
    cell is missing or empty receive it too.
    """

    validators.validate_alignment(config, len(cells))
    if not cells:
        return {}
    anchors = frame_anchors(sheet, cells, scale, config.align_mode)
    offsets, pinned = _initial_offsets(anchors, config)
    smoothed = smooth(offsets, config.temporal_smoothing)
    logger.info(
        "Aligned %s frames (%s mode, %s without target)",
        len(cells),
        AlignMode(config.align_mode).value,
        len(pinned) - 1,
    )
    return _to_overrides(smoothed, pinned, config.anchor_offset, scale)


def auto_align(
    sheet: PixelBuffer | np.ndarray,
    cells: Sequence[Optional[CellRect]],
    scale: float,
    config: AlignmentConfig,
    refine: bool = True,
    max_delta: int = DEFAULT_MAX_DELTA,
) -> dict[int, FrameOverride]:
    """Full pipeline: anchors, template-matching refinement, second smoothing pass."""

    validators.validate_alignment(config, len(cells))
    if not cells:
        return {}
    anchors = frame_anchors(sheet, cells, scale, config.align_mode)
    offsets, pinned = _initial_offsets(anchors, config)
    offsets = smooth(offsets, config.temporal_smoothing)
    offsets = [config.anchor_offset if i in pinned else o for i, o in enumerate(offsets)]
    if not refine or len(cells) < 2:
        return _to_overrides(offsets, pinned, config.anchor_offset, scale)

    refined = refine_offsets(sheet, cells, offsets, scale, max_delta, fixed=pinned)
    refined = smooth(refined, config.temporal_smoothing)
    logger.info("Refined %s frames with template matching (+/-%s px)", len(cells), max_delta)
    return _to_overrides(refined, pinned, config.anchor_offset, scale)
