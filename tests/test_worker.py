import numpy as np
import pytest

from spritesheetloop.core import ChromaKeyParams, Color, PixelBuffer
from spritesheetloop.core.errors import ValidationError, WorkerFailure
from spritesheetloop.worker import protocol
from spritesheetloop.worker.chroma_worker import ChromaKeyWorker, handle_message

MAGENTA = ChromaKeyParams(Color(255, 0, 255), fuzz_percent=20)


def _magenta_bytes(width, height):
    array = np.zeros((height, width, 4), dtype=np.uint8)
    array[:, :] = (255, 0, 255, 255)
    return array.tobytes()


def _request(**overrides):
    message = {
        "type": "process",
        "data": list(_magenta_bytes(4, 3)),
        "width": 4,
        "height": 3,
        "chromaKey": {"r": 255, "g": 0, "b": 255},
        "fuzzPercent": 20,
        "id": "job-1",
    }
    message.update(overrides)
    return message


def test_process_request_posts_progress_then_complete():
    posted = []
    handle_message(_request(), posted.append)

    assert [m["type"] for m in posted[:-1]] == ["progress"] * (len(posted) - 1)
    assert posted[-2]["progress"] == 100
    complete = posted[-1]
    assert complete["type"] == "complete"
    assert complete["id"] == "job-1"
    assert (complete["width"], complete["height"]) == (4, 3)
    assert all(m["id"] == "job-1" for m in posted)
    assert bytes(complete["data"])[3::4] == bytes(12)


def test_request_without_id_gets_responses_without_id():
    message = _request()
    del message["id"]
    posted = []
    handle_message(message, posted.append)
    assert posted[-1]["type"] == "complete"
    assert all("id" not in m for m in posted)


def test_cancel_is_acknowledged_silently():
    posted = []
    handle_message({"type": "cancel", "id": "job-1"}, posted.append)
    assert posted == []


def test_malformed_request_reports_error_with_id():
    posted = []
    handle_message({"type": "process", "id": "bad"}, posted.append)
    assert len(posted) == 1
    assert posted[0]["type"] == "error"
    assert posted[0]["id"] == "bad"


def test_length_mismatch_reports_error():
    posted = []
    handle_message(_request(data=b"\x00" * 7, id="short"), posted.append)
    assert posted == [{"type": "error", "error": posted[0]["error"], "id": "short"}]
    assert "does not match" in posted[0]["error"]


def test_parse_request_rejects_unknown_type():
    with pytest.raises(ValidationError):
        protocol.parse_request({"type": "resize"})


def test_process_request_round_trips_buffer_and_params():
    buffer = PixelBuffer(2, 1, bytearray(_magenta_bytes(2, 1)))
    request = protocol.ProcessRequest.from_buffer(buffer, MAGENTA, "x")
    wire = request.dump()
    assert wire["chromaKey"] == {"r": 255, "g": 0, "b": 255}
    assert wire["fuzzPercent"] == 20
    parsed = protocol.parse_request(wire)
    assert parsed.to_buffer() == buffer
    assert parsed.to_params() == MAGENTA


def test_worker_process_round_trip():
    progress = []
    buffer = PixelBuffer(8, 8, bytearray(_magenta_bytes(8, 8)))
    with ChromaKeyWorker() as worker:
        result = worker.process(buffer, MAGENTA, on_progress=progress.append).result(timeout=60)
    assert (result.width, result.height) == (8, 8)
    assert not result.as_array()[..., 3].any()
    assert progress[-1] == 100


def test_cancel_then_new_request_still_completes():
    buffer = PixelBuffer(8, 8, bytearray(_magenta_bytes(8, 8)))
    with ChromaKeyWorker() as worker:
        first = worker.process(buffer, MAGENTA, request_id="first")
        worker.cancel("first")
        second = worker.process(buffer, MAGENTA, request_id="second")
        assert second.result(timeout=60).width == 8
        assert first.result(timeout=60).width == 8


def test_worker_error_fails_only_that_future():
    broken = PixelBuffer(2, 2, bytearray(16))
    broken.data.extend(b"\x00\x00")
    good = PixelBuffer(2, 2, bytearray(_magenta_bytes(2, 2)))
    with ChromaKeyWorker() as worker:
        failed = worker.process(broken, MAGENTA, request_id="broken")
        ok = worker.process(good, MAGENTA, request_id="good")
        with pytest.raises(WorkerFailure) as excinfo:
            failed.result(timeout=60)
        assert excinfo.value.request_id == "broken"
        assert ok.result(timeout=60).width == 2


def test_duplicate_in_flight_id_is_rejected():
    buffer = PixelBuffer(2, 2, bytearray(_magenta_bytes(2, 2)))
    with ChromaKeyWorker() as worker:
        worker.process(buffer, MAGENTA, request_id="same")
        with pytest.raises(ValidationError):
            worker.process(buffer, MAGENTA, request_id="same")


def test_dead_worker_fails_pending_futures():
    buffer = PixelBuffer(2, 2, bytearray(_magenta_bytes(2, 2)))
    worker = ChromaKeyWorker().start()
    try:
        future = worker.process(buffer, MAGENTA)
        worker._process.terminate()
        with pytest.raises(WorkerFailure):
            future.result(timeout=30)
    finally:
        worker.close()


def test_closed_worker_refuses_new_jobs():
    worker = ChromaKeyWorker()
    worker.close()
    with pytest.raises(WorkerFailure):
        worker.process(PixelBuffer(1, 1, bytearray(4)), MAGENTA)
