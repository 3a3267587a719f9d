"""Domain-specific exceptions for sprite sheet processing."""


class InvalidBufferError(ValueError):
    """Raised when a pixel buffer's dimensions and length disagree."""


class ValidationError(ValueError):
    """Raised when user-provided settings fail validation."""


class ProcessingError(RuntimeError):
    """Raised when the pipeline fails unexpectedly."""


class WorkerFailure(RuntimeError):
    """Raised when a chroma-key worker job reports an error or the worker dies."""

    def __init__(self, message: str, request_id: str | None = None):
        if request_id:
            message = f"{message} (request {request_id})"
        super().__init__(message)
        self.request_id = request_id
