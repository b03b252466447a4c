from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx
import pytest

from telemetry import InMemoryLogSink, SnapshotCaptureFailure, TelemetryMiddleware, TelemetryRecorder
from telemetry.interceptor import RequestCapture, ResponseCapture

LOG_GROUP = "/app/api-logs"


async def _streaming_app(scope: dict[str, Any], receive, send) -> None:
    """Raw ASGI app: reads the whole body, answers in two chunks."""
    body = b""
    while True:
        message = await receive()
        body += message.get("body", b"")
        if not message.get("more_body", False):
            break
    await send(
        {
            "type": "http.response.start",
            "status": 201,
            "headers": [(b"content-type", b"text/plain"), (b"x-trace", b"late")],
        }
    )
    await send({"type": "http.response.body", "body": b"got:", "more_body": True})
    await send({"type": "http.response.body", "body": body, "more_body": False})


def _shipped(sink: InMemoryLogSink) -> list[dict[str, Any]]:
    return [
        json.loads(event.message)
        for name in sink.channel_names(LOG_GROUP)
        for event in sink.events(LOG_GROUP, name)
    ]


@pytest.mark.asyncio
async def test_response_capture_forwards_then_finalizes_once() -> None:
    sent: list[dict[str, Any]] = []
    finalized: list[ResponseCapture] = []

    async def send(message: dict[str, Any]) -> None:
        sent.append(message)

    capture = ResponseCapture(send, finalized.append)
    start = {"type": "http.response.start", "status": 200, "headers": [(b"content-type", b"application/json")]}
    first = {"type": "http.response.body", "body": b'{"a":', "more_body": True}
    last = {"type": "http.response.body", "body": b"1}"}

    await capture(start)
    await capture(first)
    assert finalized == []
    await capture(last)

    assert sent == [start, first, last]
    assert finalized == [capture]
    snapshot = capture.snapshot()
    assert snapshot.status_code == 200
    assert snapshot.headers == {"content-type": "application/json"}
    assert snapshot.body == {"a": 1}


@pytest.mark.asyncio
async def test_request_capture_buffers_then_replays_body() -> None:
    messages = iter(
        [
            {"type": "http.request", "body": b'{"x":', "more_body": True},
            {"type": "http.request", "body": b"1}", "more_body": False},
        ]
    )

    async def receive() -> dict[str, Any]:
        return next(messages)

    capture = RequestCapture(receive)
    await capture.buffer()
    assert capture.body == b'{"x":1}'
    assert (await capture())["body"] == b'{"x":'
    assert (await capture())["body"] == b"1}"

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/data",
        "query_string": b"a=1",
        "headers": [(b"content-type", b"application/json")],
    }
    snapshot = capture.snapshot(scope)
    assert snapshot.body == {"x": 1}
    assert snapshot.query == "a=1"


@pytest.mark.asyncio
async def test_middleware_captures_transmitted_response(sink: InMemoryLogSink, recorder: TelemetryRecorder) -> None:
    app = TelemetryMiddleware(_streaming_app, recorder=recorder)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/echo?q=1", content=b"payload", headers={"content-type": "text/plain"})
    await recorder.drain()

    assert response.status_code == 201
    assert response.text == "got:payload"

    [record] = _shipped(sink)
    assert record["request"]["method"] == "POST"
    assert record["request"]["path"] == "/echo"
    assert record["request"]["query"] == "q=1"
    assert record["request"]["body"] == "payload"
    assert record["response"]["statusCode"] == 201
    assert record["response"]["headers"]["x-trace"] == "late"
    assert record["response"]["body"] == "got:payload"
    assert record["elapsedMs"] >= 0
    assert record["responseTime"].endswith("ms")


@pytest.mark.asyncio
async def test_elapsed_time_covers_handler_work(sink: InMemoryLogSink, recorder: TelemetryRecorder) -> None:
    delay = 0.05

    async def slow_app(scope: dict[str, Any], receive, send) -> None:
        started = time.perf_counter()
        while time.perf_counter() - started < delay:
            await asyncio.sleep(delay)
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"done"})

    app = TelemetryMiddleware(slow_app, recorder=recorder)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/slow")
    await recorder.drain()

    assert response.text == "done"
    [record] = _shipped(sink)
    assert record["elapsedMs"] >= delay * 1000
    assert float(record["responseTime"].removesuffix("ms")) >= delay * 1000


@pytest.mark.asyncio
async def test_capture_failure_never_reaches_client(
    sink: InMemoryLogSink, recorder: TelemetryRecorder, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken(*args: Any, **kwargs: Any):
        raise ValueError("cannot snapshot")

    monkeypatch.setattr("telemetry.interceptor.build_record", broken)
    app = TelemetryMiddleware(_streaming_app, recorder=recorder)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/echo", content=b"x")
    await recorder.drain()

    assert response.status_code == 201
    assert response.text == "got:x"
    assert recorder.degraded_status()["failures"] == {SnapshotCaptureFailure.__name__: 1}
    assert [call[0] for call in sink.calls] == ["create_channel"]


@pytest.mark.asyncio
async def test_non_http_scopes_pass_through(sink: InMemoryLogSink, recorder: TelemetryRecorder) -> None:
    seen: list[str] = []

    async def inner(scope: dict[str, Any], receive, send) -> None:
        seen.append(scope["type"])

    app = TelemetryMiddleware(inner, recorder=recorder)
    await app({"type": "lifespan"}, None, None)

    assert seen == ["lifespan"]
    assert sink.calls == []


@pytest.mark.asyncio
async def test_closed_recorder_serves_without_capture(sink: InMemoryLogSink, recorder: TelemetryRecorder) -> None:
    await recorder.aclose()
    app = TelemetryMiddleware(_streaming_app, recorder=recorder)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/echo", content=b"x")

    assert response.text == "got:x"
    assert sink.calls == []
    assert sink.closed
