import numpy as np
import pytest
from PIL import Image

SHEET_MARGIN = 20


@pytest.fixture
def drifting_sheet(tmp_path):
    """240x240 green PNG: 2x2 grid of 100px cells inset by SHEET_MARGIN, a 30px red square drifting (4, 2) px per frame."""

    array = np.zeros((240, 240, 4), dtype=np.uint8)
    array[:, :] = (0, 255, 0, 255)
    for index in range(4):
        x = SHEET_MARGIN + (index % 2) * 100 + 20 + 4 * index
        y = SHEET_MARGIN + (index // 2) * 100 + 20 + 2 * index
        array[y : y + 30, x : x + 30] = (255, 0, 0, 255)
    path = tmp_path / "sheet.png"
    Image.fromarray(array, "RGBA").save(path)
    return path
