"""Response interception as a pure ASGI middleware.

The transmission point of an ASGI response is the `send` callable. Instead of
patching anything inside the framework, the middleware hands the application
a wrapped `send` (a `ResponseCapture`) that copies what it forwards. The
request body is read in full before the application runs and replayed through
a wrapped `receive`, so it is logged even when the handler never reads it.

Every message is forwarded unchanged and before any capture work happens, so
the client sees exactly what it would see without the middleware.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .errors import SnapshotCaptureFailure
from .models import LogRecord, RequestSnapshot, ResponseSnapshot, decode_body, normalize_headers, utc_now
from .recorder import TelemetryRecorder


class RequestCapture:
    """Wraps `receive`: buffers the request body up front, then replays it.

    The body is logged whether or not the handler reads it (404/405 responses,
    GET routes, handlers that ignore the payload).
    """

    def __init__(self, receive: Receive) -> None:
        self._receive = receive
        self._chunks: list[bytes] = []
        self._buffered: list[Message] = []

    async def buffer(self) -> None:
        """Read every `http.request` message until the body is complete."""
        while True:
            message = await self._receive()
            self._buffered.append(message)
            if message["type"] != "http.request":
                return
            body = message.get("body", b"")
            if body:
                self._chunks.append(bytes(body))
            if not message.get("more_body", False):
                return

    async def __call__(self) -> Message:
        if self._buffered:
            return self._buffered.pop(0)
        return await self._receive()

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)

    def snapshot(self, scope: Scope) -> RequestSnapshot:
        headers = normalize_headers(scope.get("headers", []))
        return RequestSnapshot(
            method=scope["method"],
            path=scope["path"],
            query=scope.get("query_string", b"").decode("latin-1"),
            headers=headers,
            body=decode_body(self.body, headers.get("content-type")),
        )


class ResponseCapture:
    """Wraps `send`: forwards every message, then records what was sent.

    `on_finalized` runs once, right after the last body chunk has been handed
    to the original `send`.
    """

    def __init__(self, send: Send, on_finalized: Callable[[ResponseCapture], None]) -> None:
        self._send = send
        self._on_finalized = on_finalized
        self._chunks: list[bytes] = []
        self._raw_headers: list[tuple[bytes, bytes]] = []
        self.status_code: int | None = None
        self.finalized = False

    async def __call__(self, message: Message) -> None:
        await self._send(message)

        msg_type = message["type"]
        if msg_type == "http.response.start":
            self.status_code = int(message["status"])
            self._raw_headers = [(bytes(k), bytes(v)) for k, v in message.get("headers", [])]
        elif msg_type == "http.response.body" and not self.finalized:
            body = message.get("body", b"")
            if body:
                self._chunks.append(bytes(body))
            if not message.get("more_body", False):
                self.finalized = True
                self._on_finalized(self)

    def snapshot(self) -> ResponseSnapshot:
        if self.status_code is None:
            raise RuntimeError("response body finished before http.response.start")
        headers = normalize_headers(self._raw_headers)
        return ResponseSnapshot(
            status_code=self.status_code,
            headers=headers,
            body=decode_body(b"".join(self._chunks), headers.get("content-type")),
        )


def build_record(
    scope: Scope,
    request: RequestCapture,
    response: ResponseCapture,
    *,
    started_at: datetime,
    elapsed_ms: float,
) -> LogRecord:
    return LogRecord(
        request=request.snapshot(scope),
        response=response.snapshot(),
        elapsed_ms=max(0.0, elapsed_ms),
        started_at=started_at,
    )


class TelemetryMiddleware:
    """Captures each HTTP request/response pair and ships it in the background.

    Usage:
        app.add_middleware(TelemetryMiddleware, recorder=recorder)
    """

    def __init__(self, app: ASGIApp, recorder: TelemetryRecorder) -> None:
        self.app = app
        self._recorder = recorder

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        channel = self._recorder.open_channel()
        if channel is None:
            await self.app(scope, receive, send)
            return

        started_at = utc_now()
        start = time.perf_counter()
        request = RequestCapture(receive)
        await request.buffer()

        def _on_finalized(response: ResponseCapture) -> None:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            try:
                record = build_record(scope, request, response, started_at=started_at, elapsed_ms=elapsed_ms)
            except Exception as exc:  # noqa: BLE001 - the response is already sent
                failure = SnapshotCaptureFailure(f"could not capture {scope.get('method')} {scope.get('path')}")
                failure.__cause__ = exc
                self._recorder.report(failure)
                return
            self._recorder.submit(channel, record)

        await self.app(scope, request, ResponseCapture(send, _on_finalized))
