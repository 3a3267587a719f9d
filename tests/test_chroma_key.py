import numpy as np
import pytest
from PIL import Image

from spritesheetloop.core import ChromaKeyParams, Color, PixelBuffer
from spritesheetloop.core import chroma_key
from spritesheetloop.core.chroma_key import EDGE_ALPHA_KEEP, detect_background, segment, segment_with_report
from spritesheetloop.core.color_model import KeyFamily
from spritesheetloop.core.errors import InvalidBufferError, ValidationError

MAGENTA = Color(255, 0, 255)


def _solid(width, height, rgba):
    array = np.zeros((height, width, 4), dtype=np.uint8)
    array[:, :] = rgba
    return PixelBuffer.from_array(array)


def test_solid_magenta_is_fully_removed():
    buffer = _solid(20, 20, (255, 0, 255, 255))
    report = segment_with_report(buffer, ChromaKeyParams(MAGENTA, fuzz_percent=10))
    assert report.transparent_count == 400
    assert not buffer.as_array()[..., 3].any()


def test_solid_green_preset_is_fully_removed():
    buffer = _solid(50, 50, (0, 177, 64, 255))
    report = segment_with_report(buffer, ChromaKeyParams(Color(0, 177, 64), fuzz_percent=10))
    assert report.background_detected is True
    assert report.transparent_count == 2500


def test_non_family_key_uses_distance_only():
    buffer = _solid(12, 12, (255, 0, 0, 255))
    report = segment_with_report(buffer, ChromaKeyParams(Color(255, 0, 0), fuzz_percent=10))
    assert report.background_detected is False
    assert report.transparent_count == 144


def test_foreground_is_kept():
    array = np.zeros((40, 40, 4), dtype=np.uint8)
    array[:, :] = (255, 0, 255, 255)
    array[15:25, 15:25] = (200, 150, 50, 255)
    buffer = PixelBuffer.from_array(array)

    segment(buffer, ChromaKeyParams(MAGENTA))

    out = buffer.as_array()
    assert (out[15:25, 15:25, 3] == 255).all()
    assert (out[15:25, 15:25, :3] == (200, 150, 50)).all()
    assert out[0, 0, 3] == 0
    assert np.count_nonzero(out[..., 3]) == 100


def test_transparent_pixels_are_untouched():
    rng = np.random.default_rng(7)
    array = rng.integers(0, 256, size=(30, 30, 4), dtype=np.uint8)
    array[::2, :, 3] = 0
    before = array.copy()
    buffer = PixelBuffer.from_array(array)

    segment(buffer, ChromaKeyParams(MAGENTA, fuzz_percent=50))

    out = buffer.as_array()
    mask = before[..., 3] == 0
    assert (out[mask] == before[mask]).all()


def test_fringe_pixel_is_softened_and_desaturated():
    array = np.zeros((40, 40, 4), dtype=np.uint8)
    array[:, :] = (255, 0, 255, 255)
    # Violet edge pixel: hue ~275, outside the first-pass tolerance at 10% fuzz.
    array[20, 20] = (149, 0, 255, 200)
    buffer = PixelBuffer.from_array(array)

    segment(buffer, ChromaKeyParams(MAGENTA, fuzz_percent=10))

    pixel = buffer.as_array()[20, 20]
    assert pixel[3] == int(np.floor(np.uint8(200) * EDGE_ALPHA_KEEP))
    assert tuple(pixel[:3]) == (112, 37, 165)


def test_detect_background_prefers_sampled_colour():
    buffer = _solid(30, 30, (250, 10, 240, 255))
    estimate = detect_background(buffer, MAGENTA)
    assert estimate.detected is True
    assert estimate.family is KeyFamily.MAGENTA
    assert estimate.target == Color(250, 10, 240)
    assert estimate.count == 36


def test_detect_background_skips_transparent_corner_samples():
    array = np.zeros((30, 30, 4), dtype=np.uint8)
    array[:, :] = (250, 10, 240, 0)
    array[0:3, 0:3, 3] = 255
    array[0:3, 27:30, 3] = 255
    estimate = detect_background(PixelBuffer.from_array(array), MAGENTA)
    assert estimate.detected is True
    assert estimate.count == 18


def test_detect_background_falls_back_to_nominal_key():
    buffer = _solid(30, 30, (20, 20, 200, 255))
    estimate = detect_background(buffer, MAGENTA)
    assert estimate.detected is False
    assert estimate.target == MAGENTA


def test_progress_is_monotonic_and_ends_at_100():
    seen = []
    buffer = _solid(37, 23, (255, 0, 255, 255))
    segment(buffer, ChromaKeyParams(MAGENTA), on_progress=seen.append)
    assert seen[0] == 0
    assert seen[-1] == 100
    assert seen == sorted(seen)
    assert all(0 <= value <= 100 for value in seen)


def test_invalid_fuzz_is_rejected():
    buffer = _solid(4, 4, (255, 0, 255, 255))
    with pytest.raises(ValidationError):
        segment(buffer, ChromaKeyParams(MAGENTA, fuzz_percent=0))


def test_mismatched_buffer_length_is_rejected():
    with pytest.raises(InvalidBufferError):
        PixelBuffer(2, 2, bytearray(15))


def test_buffer_corrupted_after_creation_is_rejected():
    buffer = _solid(2, 2, (0, 0, 0, 255))
    buffer.data.extend(b"\x00")
    with pytest.raises(InvalidBufferError):
        segment(buffer, ChromaKeyParams(MAGENTA))


def test_remove_chroma_key_image_returns_new_image():
    image = Image.new("RGBA", (16, 16), (0, 177, 64, 255))
    image.putpixel((8, 8), (250, 250, 250, 255))

    keyed = chroma_key.remove_chroma_key_image(image, ChromaKeyParams(Color(0, 177, 64)))

    assert keyed.mode == "RGBA"
    assert keyed.getpixel((0, 0))[3] == 0
    assert keyed.getpixel((8, 8)) == (250, 250, 250, 255)
    assert image.getpixel((0, 0))[3] == 255
