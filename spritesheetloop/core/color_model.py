"""RGB/HSL conversion and hue helpers shared by keying and matching."""

from __future__ import annotations

from enum import Enum

import numpy as np

from . import HSL, Color

MAGENTA_FAMILY_HUES = (270.0, 330.0)
GREEN_FAMILY_HUES = (70.0, 170.0)


class KeyFamily(str, Enum):
    MAGENTA = "magenta"
    GREEN = "green"
    NONE = "none"


def rgb_to_hsl(r: int, g: int, b: int) -> HSL:
    """Standard RGB to HSL; achromatic colours get hue 0 and saturation 0."""

    rf, gf, bf = r / 255.0, g / 255.0, b / 255.0
    high = max(rf, gf, bf)
    low = min(rf, gf, bf)
    lightness = (high + low) / 2.0
    delta = high - low
    if delta == 0:
        return HSL(0.0, 0.0, lightness)

    saturation = delta / (1.0 - abs(2.0 * lightness - 1.0))
    if high == rf:
        hue = 60.0 * (((gf - bf) / delta) % 6.0)
    elif high == gf:
        hue = 60.0 * ((bf - rf) / delta + 2.0)
    else:
        hue = 60.0 * ((rf - gf) / delta + 4.0)
    return HSL(hue % 360.0, min(1.0, saturation), lightness)


def rgb_to_hsl_array(rgb: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Vectorised ``rgb_to_hsl`` over an (..., 3) array of 0-255 values."""

    values = rgb.astype(np.float64) / 255.0
    rf, gf, bf = values[..., 0], values[..., 1], values[..., 2]
    high = values.max(axis=-1)
    low = values.min(axis=-1)
    lightness = (high + low) / 2.0
    delta = high - low
    chromatic = delta > 0

    safe_delta = np.where(chromatic, delta, 1.0)
    denom = 1.0 - np.abs(2.0 * lightness - 1.0)
    saturation = np.where(chromatic, delta / np.where(denom > 0, denom, 1.0), 0.0)

    hue = np.where(
        high == rf,
        60.0 * np.mod((gf - bf) / safe_delta, 6.0),
        np.where(
            high == gf,
            60.0 * ((bf - rf) / safe_delta + 2.0),
            60.0 * ((rf - gf) / safe_delta + 4.0),
        ),
    )
    hue = np.where(chromatic, np.mod(hue, 360.0), 0.0)
    return hue, np.minimum(saturation, 1.0), lightness


def hue_distance(a, b):
    """Circular distance between hues in degrees (works on scalars and arrays)."""

    diff = np.abs(np.asarray(a, dtype=np.float64) - b) % 360.0
    return np.minimum(diff, 360.0 - diff)


def hue_band_distance(hue, low: float, high: float):
    """0 inside [low, high], otherwise circular distance to the nearest edge."""

    hue = np.asarray(hue, dtype=np.float64)
    inside = (hue >= low) & (hue <= high)
    outside = np.minimum(hue_distance(hue, low), hue_distance(hue, high))
    return np.where(inside, 0.0, outside)


def classify_key_family(color: Color) -> KeyFamily:
    """Decide which screen colour family a nominal key belongs to."""

    hsl = rgb_to_hsl(color.r, color.g, color.b)
    if hsl.s == 0:
        return KeyFamily.NONE
    if MAGENTA_FAMILY_HUES[0] <= hsl.h <= MAGENTA_FAMILY_HUES[1]:
        return KeyFamily.MAGENTA
    if GREEN_FAMILY_HUES[0] <= hsl.h <= GREEN_FAMILY_HUES[1]:
        return KeyFamily.GREEN
    return KeyFamily.NONE


def luminance(rgb: np.ndarray) -> np.ndarray:
    values = rgb.astype(np.float64)
    return 0.299 * values[..., 0] + 0.587 * values[..., 1] + 0.114 * values[..., 2]
