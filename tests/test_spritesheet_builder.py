import json

import pytest
from PIL import Image

from spritesheetloop.core import (
    AlignmentConfig,
    CellRect,
    ChromaKeyParams,
    Color,
    ExportSettings,
    FrameOverride,
    SliceSettings,
)
from spritesheetloop.core import manifest_writer, spritesheet_builder


def _frames():
    return [
        Image.new("RGBA", (10, 8), (255, 0, 0, 255)),
        None,
        Image.new("RGBA", (6, 8), (0, 0, 255, 255)),
    ]


def test_resolve_grid_defaults_to_single_row():
    assert spritesheet_builder._resolve_grid(5, None, None) == (5, 1)
    assert spritesheet_builder._resolve_grid(5, 2, None) == (2, 3)
    assert spritesheet_builder._resolve_grid(5, None, 2) == (3, 2)


def test_compose_sheet_places_frames_and_leaves_blank_cells(tmp_path):
    settings = ExportSettings(sheet_path=tmp_path / "in.png", output_path=tmp_path / "out.png", padding=2)
    sheet, infos = spritesheet_builder.compose_sheet(_frames(), settings, {0: FrameOverride(3, -1, 0.5)})

    assert sheet.size == (3 * 12 - 2, 8)
    assert sheet.getpixel((0, 0)) == (255, 0, 0, 255)
    assert sheet.getpixel((12, 0))[3] == 0
    # Narrow frame is centred in its 10px cell.
    assert sheet.getpixel((24, 0))[3] == 0
    assert sheet.getpixel((26, 0)) == (0, 0, 255, 255)
    assert [info.x for info in infos] == [0, 12, 24]
    assert infos[1].empty is True
    assert (infos[0].offset_x, infos[0].offset_y, infos[0].scale) == (3, -1, 0.5)
    assert infos[2].scale == 1.0


def test_build_spritesheet_writes_png(tmp_path):
    settings = ExportSettings(sheet_path=tmp_path / "in.png", output_path=tmp_path / "nested" / "loop.webp")
    path, sheet, infos = spritesheet_builder.build_spritesheet(_frames(), settings)
    assert path == tmp_path / "nested" / "loop.png"
    assert path.exists()
    assert len(infos) == 3


def test_write_frames_skips_missing(tmp_path):
    paths = spritesheet_builder.write_frames(_frames(), tmp_path / "frames")
    assert [p.name for p in paths] == ["frame_0000.png", "frame_0002.png"]
    custom = spritesheet_builder.write_frames(_frames(), tmp_path / "custom", "walk_{index:02d}.png")
    assert custom[-1].name == "walk_02.png"


def test_write_manifest_describes_sources_and_offsets(tmp_path):
    settings = ExportSettings(
        sheet_path=tmp_path / "in.png",
        output_path=tmp_path / "loop.png",
        generate_manifest=True,
    )
    _, _, infos = spritesheet_builder.build_spritesheet(_frames(), settings)
    cells = [CellRect(0, 0, 10, 8), None, CellRect(20, 0, 6, 8)]

    path = manifest_writer.write_manifest(
        infos,
        settings,
        3,
        1,
        slice_settings=SliceSettings(cols=3, rows=1),
        cells=cells,
        alignment=AlignmentConfig(),
        chroma=ChromaKeyParams(Color(255, 0, 255)),
    )

    assert path == tmp_path / "loop.json"
    manifest = json.loads(path.read_text(encoding="utf-8"))
    assert manifest["source"] == str(tmp_path / "in.png")
    assert manifest["frames"]["frame_0000"]["source"] == {"x": 0, "y": 0, "width": 10, "height": 8}
    assert manifest["frames"]["frame_0001"]["source"] is None
    assert manifest["frames"]["frame_0001"]["empty"] is True
    assert manifest["meta"]["columns"] == 3
    assert manifest["meta"]["alignment"]["alignMode"] == "core"
    assert manifest["meta"]["chromaKey"] == {"key": [255, 0, 255], "fuzzPercent": 35.0}
    assert manifest["meta"]["slice"]["sliceMode"] == "equal"


def test_write_manifest_requires_flag(tmp_path):
    settings = ExportSettings(sheet_path=tmp_path / "in.png", output_path=tmp_path / "loop.png")
    with pytest.raises(ValueError):
        manifest_writer.write_manifest([], settings, 1, 1)


@pytest.mark.parametrize("name", ["loop.gif", "loop.png"])
def test_build_animation_writes_every_frame(tmp_path, name):
    frames = [
        Image.new("RGBA", (10, 8), (255, 0, 0, 255)),
        Image.new("RGBA", (6, 8), (0, 255, 0, 255)),
        Image.new("RGBA", (10, 4), (0, 0, 255, 255)),
    ]
    path = spritesheet_builder.build_animation(frames, tmp_path / "anim" / name, fps=10)

    with Image.open(path) as animation:
        assert animation.n_frames == 3
        assert animation.size == (10, 8)
        assert animation.info["duration"] == 100
        assert animation.info["loop"] == 0


def test_build_animation_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        spritesheet_builder.build_animation(_frames(), tmp_path / "loop.mp4")
    with pytest.raises(ValueError):
        spritesheet_builder.build_animation(_frames(), tmp_path / "loop.gif", fps=0)
