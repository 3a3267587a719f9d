"""Command-line entry point for sprite-sheet-to-loop workflows."""

import argparse
import sys
from pathlib import Path

from spritesheetloop.core import (
    DEFAULT_FUZZ_PERCENT,
    AlignMode,
    AlignmentConfig,
    ChromaKeyParams,
    Color,
    ExportSettings,
    Offset,
    SliceSettings,
)
from spritesheetloop.core import pipeline
from spritesheetloop.core.spritesheet_builder import DEFAULT_ANIMATION_FPS
from spritesheetloop.core.errors import ProcessingError, ValidationError, WorkerFailure
from spritesheetloop.main import configure_logging
from spritesheetloop.utils import file_tools, validators
from spritesheetloop.worker.chroma_worker import ChromaKeyWorker


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sheet2loop",
        description="Key, slice and align a sprite sheet into a stable animation loop.",
    )
    parser.add_argument("input", type=Path, help="Path to the source sprite sheet")
    parser.add_argument(
        "output",
        type=Path,
        nargs="?",
        help="Destination loop sheet path (default: <input>_loop.png)",
    )

    grid_group = parser.add_argument_group("grid")
    grid_group.add_argument("--cols", type=int, required=True, help="Columns in the source sheet")
    grid_group.add_argument("--rows", type=int, required=True, help="Rows in the source sheet")
    grid_group.add_argument("--padding-x", type=float, default=0, help="Symmetric horizontal padding (px)")
    grid_group.add_argument("--padding-y", type=float, default=0, help="Symmetric vertical padding (px)")
    for edge in ("left", "right", "top", "bottom"):
        grid_group.add_argument(f"--padding-{edge}", type=float, help=f"Per-edge {edge} padding (px)")
    grid_group.add_argument("--shift-x", type=float, default=0, help="Nudge every cell horizontally (px)")
    grid_group.add_argument("--shift-y", type=float, default=0, help="Nudge every cell vertically (px)")
    grid_group.add_argument(
        "--optimize",
        action="store_true",
        help="Derive per-edge padding from the keyed sheet's content bounds",
    )

    key_group = parser.add_argument_group("chroma key")
    key_group.add_argument("--key", help="Key colour: magenta, green or R,G,B (omit to skip keying)")
    key_group.add_argument(
        "--fuzz",
        type=float,
        default=DEFAULT_FUZZ_PERCENT,
        help=f"Key tolerance percent (default: {DEFAULT_FUZZ_PERCENT:g})",
    )
    key_group.add_argument(
        "--in-process",
        action="store_true",
        help="Run keying in this process instead of a worker process",
    )

    align_group = parser.add_argument_group("alignment")
    align_group.add_argument("--no-align", action="store_true", help="Skip auto-alignment")
    align_group.add_argument("--no-refine", action="store_true", help="Skip template-matching refinement")
    align_group.add_argument(
        "--align-mode",
        choices=[mode.value for mode in AlignMode],
        default=AlignMode.CORE.value,
        help="Anchor heuristic (default: core)",
    )
    align_group.add_argument("--smoothing", type=float, default=0.7, help="Temporal smoothing 0..1 (default: 0.7)")
    align_group.add_argument("--anchor-frame", type=int, default=0, help="Frame the others are aligned to")
    align_group.add_argument(
        "--anchor-offset",
        type=float,
        nargs=2,
        metavar=("X", "Y"),
        default=(0.0, 0.0),
        help="Offset kept by the anchor frame (px)",
    )
    align_group.add_argument("--scale", type=float, default=1.0, help="Uniform crop scale 0.25..1")

    out_group = parser.add_argument_group("output")
    out_group.add_argument("--out-columns", type=int, help="Columns of the output sheet (default: one row)")
    out_group.add_argument("--out-rows", type=int, help="Rows of the output sheet")
    out_group.add_argument("--out-padding", type=int, default=0, help="Gap between output frames (px)")
    out_group.add_argument("--background", help="Output background colour R,G,B[,A] (default: transparent)")
    out_group.add_argument("--frames-dir", type=Path, help="Also write each frame as a PNG here")
    out_group.add_argument("--frame-pattern", help="Frame filename pattern using {index}")
    out_group.add_argument("--animation", type=Path, help="Also write an animated loop here (.gif or .png for APNG)")
    out_group.add_argument(
        "--fps",
        type=float,
        default=DEFAULT_ANIMATION_FPS,
        help=f"Animation frame rate (default: {DEFAULT_ANIMATION_FPS})",
    )
    out_group.add_argument(
        "--metadata",
        type=Path,
        help="Optional JSON manifest output for frame sources, offsets and positions",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse arguments and show plan without rendering outputs",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _settings_from_args(args: argparse.Namespace):
    validators.validate_grid(args.cols, args.rows)
    validators.validate_padding(
        padding_x=args.padding_x,
        padding_y=args.padding_y,
        padding_left=args.padding_left,
        padding_right=args.padding_right,
        padding_top=args.padding_top,
        padding_bottom=args.padding_bottom,
    )
    validators.validate_grid(args.out_columns, args.out_rows)
    slice_settings = SliceSettings(
        cols=args.cols,
        rows=args.rows,
        padding_x=args.padding_x,
        padding_y=args.padding_y,
        shift_x=args.shift_x,
        shift_y=args.shift_y,
        padding_left=args.padding_left,
        padding_right=args.padding_right,
        padding_top=args.padding_top,
        padding_bottom=args.padding_bottom,
    )

    chroma = None
    if args.key:
        validators.validate_fuzz(args.fuzz)
        chroma = ChromaKeyParams(key=Color(*validators.parse_key_color(args.key)), fuzz_percent=args.fuzz)

    alignment = None
    if not args.no_align:
        alignment = AlignmentConfig(
            align_mode=AlignMode(args.align_mode),
            temporal_smoothing=args.smoothing,
            anchor_frame=args.anchor_frame,
            anchor_offset=Offset(*args.anchor_offset),
        )
        validators.validate_alignment(alignment, args.cols * args.rows)
    validators.validate_scale(args.scale)
    if args.animation is not None:
        validators.validate_animation_path(args.animation)
        validators.validate_fps(args.fps)

    export = ExportSettings(
        sheet_path=args.input,
        output_path=args.output or file_tools.default_output_path(args.input),
        columns=args.out_columns,
        rows=args.out_rows,
        padding=args.out_padding,
        background_color=validators.parse_color_tuple(args.background),
        frames_dir=args.frames_dir,
        output_pattern=args.frame_pattern,
        generate_manifest=args.metadata is not None,
        manifest_path=args.metadata,
        animation_path=args.animation,
        fps=args.fps,
    )
    return slice_settings, chroma, alignment, export


def _print_plan(args, slice_settings, chroma, alignment, export) -> None:
    print(f"Sheet: {args.input} -> {export.output_path.with_suffix('.png')}")
    print(f"Grid: {slice_settings.cols}x{slice_settings.rows}" + (" (optimised padding)" if args.optimize else ""))
    if chroma is None:
        print("Chroma key: off")
    else:
        where = "in-process" if args.in_process else "worker process"
        print(f"Chroma key: {chroma.key.as_tuple()} fuzz {chroma.fuzz_percent:g}% ({where})")
    if alignment is None:
        print("Alignment: off")
    else:
        print(
            f"Alignment: {alignment.align_mode.value}, smoothing {alignment.temporal_smoothing:g}, "
            f"anchor frame {alignment.anchor_frame}" + ("" if not args.no_refine else ", no refinement")
        )
    if export.frames_dir:
        print(f"Frames: {export.frames_dir}")
    if export.generate_manifest:
        print(f"Manifest: {export.manifest_path.with_suffix('.json')}")
    if export.animation_path:
        print(f"Animation: {export.animation_path} at {export.fps:g} fps")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        slice_settings, chroma, alignment, export = _settings_from_args(args)
    except ValidationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.dry_run:
        _print_plan(args, slice_settings, chroma, alignment, export)
        return 0

    worker = None if args.in_process or chroma is None else ChromaKeyWorker()
    try:
        outcome = pipeline.run_loop(
            export,
            slice_settings,
            alignment,
            chroma,
            scale=args.scale,
            optimize=args.optimize,
            refine=not args.no_refine,
            worker=worker,
        )
    except (ValidationError, ProcessingError, WorkerFailure) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        if worker is not None:
            worker.close()

    print(f"Wrote {outcome.spritesheet_path}")
    if outcome.manifest_path:
        print(f"Wrote {outcome.manifest_path}")
    if outcome.animation_path:
        print(f"Wrote {outcome.animation_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
