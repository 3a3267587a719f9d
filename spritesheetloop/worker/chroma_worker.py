"""Chroma-key segmentation in a separate process.

The worker side is ``handle_message``: one request in, responses out through
``post``. ``ChromaKeyWorker`` owns the process and turns responses back into
futures. Jobs run one at a time, in the order they were posted.
"""

from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from ..core import ChromaKeyParams, PixelBuffer
from ..core import chroma_key
from ..core.errors import ValidationError, WorkerFailure
from ..utils import validators
from . import protocol

logger = logging.getLogger(__name__)

Post = Callable[[dict[str, Any]], None]
ProgressCallback = Callable[[int], None]

POLL_INTERVAL = 0.2
JOIN_TIMEOUT = 5.0


def handle_message(message: Mapping[str, Any], post: Post) -> None:
    """Process one request and post its responses.

    Every failure becomes an ``error`` response; nothing is raised to the
    caller so a bad request never takes the worker down.
    """

    request_id = message.get("id") if isinstance(message, Mapping) else None
    if not isinstance(request_id, str):
        request_id = None
    try:
        request = protocol.parse_request(message)
    except ValidationError as exc:
        logger.warning("Rejected worker request %s: %s", request_id, exc)
        post(protocol.ErrorResponse(error=str(exc), id=request_id).dump())
        return

    if isinstance(request, protocol.CancelRequest):
        # Advisory: jobs are not interrupted once started.
        logger.info("Cancel received for request %s; in-flight work is not interrupted", request.id)
        return

    def report(progress: int) -> None:
        post(protocol.ProgressResponse(progress=progress, id=request.id).dump())

    try:
        buffer = chroma_key.segment(request.to_buffer(), request.to_params(), on_progress=report)
    except Exception as exc:
        logger.warning("Chroma key job %s failed: %s", request.id, exc)
        post(protocol.ErrorResponse(error=str(exc) or type(exc).__name__, id=request.id).dump())
        return

    post(
        protocol.CompleteResponse(
            data=bytes(buffer.data), width=buffer.width, height=buffer.height, id=request.id
        ).dump()
    )


def worker_main(requests, responses) -> None:
    """Process entry point: serve requests until the ``None`` sentinel arrives."""

    while True:
        message = requests.get()
        if message is None:
            break
        handle_message(message, responses.put)


@dataclass
class _PendingJob:
    future: Future
    on_progress: Optional[ProgressCallback] = None


class ChromaKeyWorker:
    """Orchestrator for a single worker process.

    Responses are routed by request ``id`` on a dispatcher thread, so
    progress callbacks run there and never block the submitting thread.
    """

    def __init__(self, context=None) -> None:
        self._context = context or multiprocessing.get_context("spawn")
        self._requests = None
        self._responses = None
        self._process = None
        self._dispatcher: Optional[threading.Thread] = None
        self._pending: dict[str, _PendingJob] = {}
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "ChromaKeyWorker":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def start(self) -> "ChromaKeyWorker":
        if self._closed:
            raise WorkerFailure("Worker has been closed")
        if self._process is not None:
            return self
        self._requests = self._context.Queue()
        self._responses = self._context.Queue()
        self._process = self._context.Process(
            target=worker_main,
            args=(self._requests, self._responses),
            name="chroma-key-worker",
            daemon=True,
        )
        self._process.start()
        self._dispatcher = threading.Thread(target=self._dispatch, name="chroma-key-dispatch", daemon=True)
        self._dispatcher.start()
        logger.debug("Started chroma key worker pid=%s", self._process.pid)
        return self

    def post(self, message: Mapping[str, Any]) -> None:
        """Send a raw request dict to the worker."""

        self.start()
        self._requests.put(dict(message))

    def process(
        self,
        buffer: PixelBuffer,
        params: ChromaKeyParams,
        request_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Future:
        """Queue a segmentation job; the future resolves to the keyed PixelBuffer."""

        validators.validate_fuzz(params.fuzz_percent)
        request_id = request_id or uuid.uuid4().hex
        request = protocol.ProcessRequest.from_buffer(buffer, params, request_id)
        future: Future = Future()
        with self._lock:
            if request_id in self._pending:
                raise ValidationError(f"Request {request_id} is already in flight")
            self._pending[request_id] = _PendingJob(future, on_progress)
        try:
            self.post(request.dump())
        except Exception:
            with self._lock:
                self._pending.pop(request_id, None)
            raise
        return future

    def cancel(self, request_id: str) -> None:
        self.post(protocol.CancelRequest(id=request_id).dump())

    def close(self, timeout: float = JOIN_TIMEOUT) -> None:
        if self._closed:
            return
        self._closed = True
        if self._process is None:
            return
        self._requests.put(None)
        self._process.join(timeout)
        if self._process.is_alive():
            logger.warning("Chroma key worker did not exit in %.1fs; terminating", timeout)
            self._process.terminate()
            self._process.join()
        # Nobody reads the request queue any more; unsent data must not block exit.
        self._requests.cancel_join_thread()
        self._responses.put(None)
        if self._dispatcher is not None:
            self._dispatcher.join(timeout)
        self._fail_pending("Worker closed before the request completed")

    def _dispatch(self) -> None:
        while True:
            try:
                message = self._responses.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if not self._process.is_alive():
                    if not self._closed:
                        logger.warning("Chroma key worker exited with code %s", self._process.exitcode)
                    self._fail_pending(f"Worker process exited with code {self._process.exitcode}")
                    return
                continue
            if message is None:
                return
            self._route(message)

    def _route(self, message: Mapping[str, Any]) -> None:
        try:
            response = protocol.parse_response(message)
        except ValidationError as exc:
            logger.warning("Ignoring malformed worker response: %s", exc)
            return

        with self._lock:
            if isinstance(response, protocol.ProgressResponse):
                job = self._pending.get(response.id)
            else:
                job = self._pending.pop(response.id, None)
        if job is None:
            logger.debug("No pending request for %s response id=%s", response.type, response.id)
            return

        if isinstance(response, protocol.ProgressResponse):
            if job.on_progress is not None:
                try:
                    job.on_progress(response.progress)
                except Exception:
                    logger.exception("Progress callback for %s raised", response.id)
            return
        if job.future.done():
            return
        if isinstance(response, protocol.CompleteResponse):
            job.future.set_result(response.to_buffer())
        else:
            job.future.set_exception(WorkerFailure(response.error, response.id))

    def _fail_pending(self, reason: str) -> None:
        with self._lock:
            jobs = list(self._pending.items())
            self._pending.clear()
        for request_id, job in jobs:
            if not job.future.done():
                job.future.set_exception(WorkerFailure(reason, request_id))
