"""Message models exchanged with the chroma-key worker process.

Requests and responses travel as plain dicts (picklable across the process
boundary) using camelCase keys; these models validate and build them.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as ModelValidationError

from ..core import DEFAULT_FUZZ_PERCENT, ChromaKeyParams, Color, PixelBuffer
from ..core.errors import ValidationError


class KeyColor(BaseModel):
    r: int = Field(ge=0, le=255)
    g: int = Field(ge=0, le=255)
    b: int = Field(ge=0, le=255)


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None

    def dump(self) -> dict[str, Any]:
        """Wire form: camelCase keys, ``id`` omitted when unset."""

        return self.model_dump(by_alias=True, exclude_none=True)


class ProcessRequest(_Message):
    type: Literal["process"] = "process"
    data: bytes
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    chroma_key: KeyColor = Field(alias="chromaKey")
    fuzz_percent: float = Field(DEFAULT_FUZZ_PERCENT, alias="fuzzPercent", gt=0, le=100)

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value):
        if isinstance(value, (list, tuple)):
            return bytes(value)
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        return value

    @classmethod
    def from_buffer(
        cls, buffer: PixelBuffer, params: ChromaKeyParams, request_id: Optional[str] = None
    ) -> "ProcessRequest":
        return cls(
            data=bytes(buffer.data),
            width=buffer.width,
            height=buffer.height,
            chroma_key=KeyColor(r=params.key.r, g=params.key.g, b=params.key.b),
            fuzz_percent=params.fuzz_percent,
            id=request_id,
        )

    def to_buffer(self) -> PixelBuffer:
        return PixelBuffer(self.width, self.height, bytearray(self.data))

    def to_params(self) -> ChromaKeyParams:
        return ChromaKeyParams(
            key=Color(self.chroma_key.r, self.chroma_key.g, self.chroma_key.b),
            fuzz_percent=self.fuzz_percent,
        )


class CancelRequest(_Message):
    type: Literal["cancel"] = "cancel"


class ProgressResponse(_Message):
    type: Literal["progress"] = "progress"
    progress: int = Field(ge=0, le=100)


class CompleteResponse(_Message):
    type: Literal["complete"] = "complete"
    data: bytes
    width: int
    height: int

    def to_buffer(self) -> PixelBuffer:
        return PixelBuffer(self.width, self.height, bytearray(self.data))


class ErrorResponse(_Message):
    type: Literal["error"] = "error"
    error: str


WorkerRequest = Annotated[Union[ProcessRequest, CancelRequest], Field(discriminator="type")]
WorkerResponse = Annotated[
    Union[ProgressResponse, CompleteResponse, ErrorResponse], Field(discriminator="type")
]

_request_adapter = TypeAdapter(WorkerRequest)
_response_adapter = TypeAdapter(WorkerResponse)


def parse_request(message: Mapping[str, Any]) -> Union[ProcessRequest, CancelRequest]:
    try:
        return _request_adapter.validate_python(message)
    except ModelValidationError as exc:
        raise ValidationError(f"Invalid worker request: {exc}") from exc


def parse_response(message: Mapping[str, Any]) -> Union[ProgressResponse, CompleteResponse, ErrorResponse]:
    try:
        return _response_adapter.validate_python(message)
    except ModelValidationError as exc:
        raise ValidationError(f"Invalid worker response: {exc}") from exc
