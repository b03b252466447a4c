from __future__ import annotations

import pytest

from telemetry import InMemoryLogSink, TelemetryRecorder

LOG_GROUP = "/app/api-logs"
PREFIX = "api-log-stream"


@pytest.fixture(autouse=True)
def _no_threads_in_unit_tests(request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch):
    """Run `asyncio.to_thread` inline for unit tests.

    Sink calls go through `asyncio.to_thread`. In unit tests, this can create
    threadpool workers that keep the Python process alive longer than expected
    under some runtimes. Tests marked `real_threads` keep the real threadpool.
    """
    if request.node.get_closest_marker("real_threads") is not None:
        yield
        return

    async def _to_thread(func, /, *args, **kwargs):  # noqa: ANN001, D401
        return func(*args, **kwargs)

    monkeypatch.setattr("telemetry.shipper.asyncio.to_thread", _to_thread)
    yield


@pytest.fixture
def sink() -> InMemoryLogSink:
    return InMemoryLogSink()


@pytest.fixture
def recorder(sink: InMemoryLogSink) -> TelemetryRecorder:
    return TelemetryRecorder(sink=sink, log_group=LOG_GROUP, channel_prefix=PREFIX)
