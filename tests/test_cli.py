import json

from PIL import Image

from sheet2loop import cli


def test_build_parser_creates_arguments():
    parser = cli.build_parser()
    args = parser.parse_args(
        ["sheet.png", "out.png", "--cols", "4", "--rows", "2", "--key", "magenta", "--fuzz", "20", "--dry-run"]
    )
    assert args.input.name == "sheet.png"
    assert args.output.name == "out.png"
    assert (args.cols, args.rows) == (4, 2)
    assert args.fuzz == 20
    assert args.align_mode == "core"
    assert args.smoothing == 0.7
    assert args.dry_run is True


def test_main_dry_run_prints_plan(capsys):
    code = cli.main(["sheet.png", "out.png", "--cols", "2", "--rows", "2", "--key", "green", "--dry-run"])
    assert code == 0
    out = capsys.readouterr().out
    assert "Grid: 2x2" in out
    assert "(0, 177, 64)" in out
    assert "Alignment: core" in out


def test_main_rejects_bad_key_colour(capsys):
    code = cli.main(["sheet.png", "out.png", "--cols", "2", "--rows", "2", "--key", "teal", "--dry-run"])
    assert code == 2
    assert "error:" in capsys.readouterr().err


def test_main_rejects_anchor_outside_grid():
    assert cli.main(["sheet.png", "out.png", "--cols", "2", "--rows", "1", "--anchor-frame", "2", "--dry-run"]) == 2


def test_main_reports_missing_input(tmp_path, capsys):
    code = cli.main([str(tmp_path / "missing.png"), str(tmp_path / "out.png"), "--cols", "1", "--rows", "1"])
    assert code == 1
    assert "Image not found" in capsys.readouterr().err


def test_main_in_process_run_writes_outputs(tmp_path, drifting_sheet):
    source = drifting_sheet
    output = tmp_path / "loop.png"
    manifest = tmp_path / "loop_manifest.json"

    code = cli.main(
        [
            str(source),
            str(output),
            "--cols",
            "2",
            "--rows",
            "2",
            "--padding-x",
            "20",
            "--padding-y",
            "20",
            "--key",
            "0,255,0",
            "--in-process",
            "--align-mode",
            "mass",
            "--smoothing",
            "0",
            "--frames-dir",
            str(tmp_path / "frames"),
            "--metadata",
            str(manifest),
        ]
    )

    assert code == 0
    assert Image.open(output).size == (400, 100)
    assert len(list((tmp_path / "frames").glob("*.png"))) == 4
    data = json.loads(manifest.read_text(encoding="utf-8"))
    assert data["meta"]["alignment"]["alignMode"] == "mass"


def test_main_keys_through_worker_process(tmp_path, drifting_sheet):
    source = drifting_sheet
    output = tmp_path / "loop.png"

    args = [str(source), str(output), "--cols", "2", "--rows", "2", "--padding-x", "20", "--padding-y", "20"]
    code = cli.main(args + ["--key", "0,255,0", "--no-align"])

    assert code == 0
    assert Image.open(output).getpixel((1, 1))[3] == 0


def test_main_defaults_output_next_to_input(tmp_path, drifting_sheet):
    code = cli.main(
        [
            str(drifting_sheet),
            "--cols",
            "2",
            "--rows",
            "2",
            "--padding-x",
            "20",
            "--padding-y",
            "20",
            "--no-align",
            "--background",
            "0,0,0",
            "--out-padding",
            "2",
        ]
    )

    assert code == 0
    output = tmp_path / "sheet_loop.png"
    sheet = Image.open(output)
    assert sheet.size == (406, 100)
    assert sheet.getpixel((0, 0)) == (0, 255, 0, 255)
    assert sheet.getpixel((100, 0)) == (0, 0, 0, 255)


def test_main_rejects_bad_background(capsys):
    code = cli.main(["sheet.png", "--cols", "1", "--rows", "1", "--background", "1,2", "--dry-run"])
    assert code == 2


def test_main_writes_gif_animation(tmp_path, drifting_sheet):
    animation = tmp_path / "walk.gif"
    args = [str(drifting_sheet), str(tmp_path / "loop.png"), "--cols", "2", "--rows", "2"]
    code = cli.main(args + ["--no-align", "--animation", str(animation), "--fps", "10"])

    assert code == 0
    with Image.open(animation) as gif:
        assert gif.n_frames == 4
        assert gif.info["duration"] == 100


def test_main_rejects_bad_animation_settings():
    base = ["sheet.png", "--cols", "1", "--rows", "1", "--dry-run"]
    assert cli.main(base + ["--animation", "loop.mp4"]) == 2
    assert cli.main(base + ["--animation", "loop.gif", "--fps", "0"]) == 2
