"""FastAPI surface for sprite sheet keying, slicing and alignment."""

from __future__ import annotations

import io
import json
import logging
import os
from dataclasses import asdict
from typing import Any, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field, field_validator
from starlette.concurrency import run_in_threadpool

from ..core import (
    DEFAULT_FUZZ_PERCENT,
    AlignMode,
    AlignmentConfig,
    ChromaKeyParams,
    Color,
    Offset,
    PixelBuffer,
    SliceSettings,
)
from ..core import alignment, chroma_key, grid
from ..core.errors import InvalidBufferError, ValidationError
from ..utils import validators

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = int(os.environ.get("SSL_MAX_UPLOAD_MB", "25")) * 1024 * 1024
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("SSL_ALLOWED_ORIGINS", "http://localhost:8000").split(",")
    if origin.strip()
]


def _parse_key(value):
    if isinstance(value, (list, tuple)):
        if len(value) not in (3, 4):
            raise ValueError("Key color must be R,G,B")
        return tuple(value[:3])
    if isinstance(value, str):
        return validators.parse_key_color(value)
    raise ValueError("Key color must be a preset name or R,G,B")


class ChromaKeyRequest(BaseModel):
    """Incoming chroma-key options."""

    key: tuple[int, int, int] = (255, 0, 255)
    fuzz_percent: float = Field(DEFAULT_FUZZ_PERCENT, gt=0, le=100)

    @field_validator("key", mode="before")
    @classmethod
    def _parse_key_color(cls, value):
        return _parse_key(value)

    @field_validator("key")
    @classmethod
    def _check_range(cls, value):
        if any(channel < 0 or channel > 255 for channel in value):
            raise ValueError("Color values must be between 0 and 255")
        return value

    def to_params(self) -> ChromaKeyParams:
        return ChromaKeyParams(key=Color(*self.key), fuzz_percent=self.fuzz_percent)


class SliceRequest(BaseModel):
    """Grid description for slicing a sheet."""

    cols: int = Field(ge=1)
    rows: int = Field(ge=1)
    padding_x: float = Field(0, ge=0)
    padding_y: float = Field(0, ge=0)
    padding_left: Optional[float] = Field(None, ge=0)
    padding_right: Optional[float] = Field(None, ge=0)
    padding_top: Optional[float] = Field(None, ge=0)
    padding_bottom: Optional[float] = Field(None, ge=0)
    shift_x: float = 0
    shift_y: float = 0
    optimize: bool = False
    chroma_key: Optional[ChromaKeyRequest] = None

    @field_validator("padding_left", "padding_right", "padding_top", "padding_bottom", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if value in ("", "null"):
            return None
        return value

    def to_settings(self) -> SliceSettings:
        return SliceSettings(
            cols=self.cols,
            rows=self.rows,
            padding_x=self.padding_x,
            padding_y=self.padding_y,
            padding_left=self.padding_left,
            padding_right=self.padding_right,
            padding_top=self.padding_top,
            padding_bottom=self.padding_bottom,
            shift_x=self.shift_x,
            shift_y=self.shift_y,
        )


class AlignRequest(SliceRequest):
    """Slice settings plus auto-alignment knobs."""

    align_mode: AlignMode = AlignMode.CORE
    temporal_smoothing: float = Field(0.7, ge=0, le=1)
    anchor_frame: int = Field(0, ge=0)
    anchor_offset_x: float = 0
    anchor_offset_y: float = 0
    scale: float = Field(1.0, ge=0.25, le=1)
    refine: bool = True

    @field_validator("align_mode", mode="before")
    @classmethod
    def _lower_mode(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def to_config(self) -> AlignmentConfig:
        return AlignmentConfig(
            align_mode=self.align_mode,
            temporal_smoothing=self.temporal_smoothing,
            anchor_frame=self.anchor_frame,
            anchor_offset=Offset(self.anchor_offset_x, self.anchor_offset_y),
        )


def create_app() -> FastAPI:
    app = FastAPI(title="Sprite Sheet Loop", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/chroma-key")
    async def chroma_key_image(
        request: Request,
        image: UploadFile = File(...),
        settings: str = Form("{}"),
    ) -> Response:
        options = _parse_settings(settings, ChromaKeyRequest)
        buffer = await _read_sheet(request, image)
        try:
            report = await run_in_threadpool(chroma_key.segment_with_report, buffer, options.to_params())
        except (ValidationError, InvalidBufferError) as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        png = await run_in_threadpool(_encode_png, report.buffer)
        return Response(
            content=png,
            media_type="image/png",
            headers={
                "X-Key-Color": ",".join(str(c) for c in report.target.as_tuple()),
                "X-Background-Detected": "true" if report.background_detected else "false",
                "X-Transparent-Pixels": str(report.transparent_count),
            },
        )

    @app.post("/api/slice")
    async def slice_sheet(
        request: Request,
        image: UploadFile = File(...),
        settings: str = Form("{}"),
    ) -> dict[str, Any]:
        options = _parse_settings(settings, SliceRequest)
        buffer = await _read_sheet(request, image)
        slice_settings, cells = await run_in_threadpool(_run_slice, buffer, options)
        return {
            "width": buffer.width,
            "height": buffer.height,
            "settings": asdict(slice_settings),
            "cells": [asdict(cell) if cell is not None else None for cell in cells],
        }

    @app.post("/api/align")
    async def align_sheet(
        request: Request,
        image: UploadFile = File(...),
        settings: str = Form("{}"),
    ) -> dict[str, Any]:
        options = _parse_settings(settings, AlignRequest)
        buffer = await _read_sheet(request, image)
        try:
            slice_settings, cells, overrides = await run_in_threadpool(_run_align, buffer, options)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {
            "settings": asdict(slice_settings),
            "cells": [asdict(cell) if cell is not None else None for cell in cells],
            "overrides": {
                str(index): {"offsetX": o.offset_x, "offsetY": o.offset_y, "scale": o.scale}
                for index, o in overrides.items()
            },
        }

    return app


def _parse_settings(raw: str, model: type[BaseModel]):
    try:
        payload = json.loads(raw) if raw else {}
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid settings JSON: {exc}") from exc
    try:
        return model.model_validate(payload)
    except Exception as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


async def _read_sheet(request: Request, upload: UploadFile) -> PixelBuffer:
    _enforce_size_limit(request)
    content = await upload.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    try:
        with Image.open(io.BytesIO(content)) as img:
            return PixelBuffer.from_image(img)
    except (OSError, UnidentifiedImageError) as exc:
        raise HTTPException(status_code=400, detail=f"File failed validation: {exc}") from exc


def _enforce_size_limit(request: Request) -> None:
    """Simple guardrail on upload size based on Content-Length."""

    content_length = request.headers.get("content-length")
    if not content_length:
        return
    try:
        size = int(content_length)
    except ValueError:
        return
    if size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Upload exceeds limit")


def _encode_png(buffer: PixelBuffer) -> bytes:
    out = io.BytesIO()
    buffer.to_image().save(out, format="PNG")
    return out.getvalue()


def _run_slice(buffer: PixelBuffer, options: SliceRequest):
    if options.chroma_key is not None:
        chroma_key.segment(buffer, options.chroma_key.to_params())
    settings = options.to_settings()
    if options.optimize:
        settings = grid.optimize_slice_settings(buffer, options.cols, options.rows)
    return settings, grid.cell_rects(buffer.width, buffer.height, settings)


def _run_align(buffer: PixelBuffer, options: AlignRequest):
    settings, cells = _run_slice(buffer, options)
    overrides = alignment.auto_align(buffer, cells, options.scale, options.to_config(), refine=options.refine)
    return settings, cells, overrides


app = create_app()
