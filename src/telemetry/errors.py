"""Failure taxonomy for the capture-and-ship pipeline.

Two families live here:

- Sink exceptions (`SinkError` and subclasses) are raised by sink backends
  and describe what the remote service rejected.
- Telemetry failures (`TelemetryFailure` and subclasses) describe which
  pipeline step failed. They are never raised into the request path; they are
  handed to a `FailureTracker`, logged locally and counted.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any

from .models import utc_now


class SinkError(RuntimeError):
    """A sink call failed (transport error or rejection)."""


class ChannelAlreadyExists(SinkError):
    """create_channel was called with a name the sink already knows."""


class ChannelNotFound(SinkError):
    """The named channel (or its group) does not exist on the sink."""


class InvalidSequenceToken(SinkError):
    """An append carried a stale token, or omitted one the sink expected."""

    def __init__(self, message: str, *, expected: str | None = None) -> None:
        self.expected = expected
        super().__init__(message)


class TelemetryFailure(Exception):
    """Base class for pipeline step failures."""

    def __init__(self, message: str, *, channel: str | None = None) -> None:
        self.channel = channel
        super().__init__(message)


class ChannelCreationFailure(TelemetryFailure):
    """Remote create-channel call failed or was rejected."""


class TokenQueryFailure(TelemetryFailure):
    """Remote describe call failed or returned no usable result."""


class AppendFailure(TelemetryFailure):
    """Remote append was rejected or the transport failed."""


class SnapshotCaptureFailure(TelemetryFailure):
    """The response snapshot or log record could not be assembled."""


class FailureTracker:
    """Logs telemetry failures locally and keeps a degraded-status window.

    One tracker is shared by the pipeline components of a process; it only ever
    runs on the event loop thread.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("telemetry.failures")
        self._counts: Counter[str] = Counter()
        self._first_failure_at: datetime | None = None
        self._last_failure_at: datetime | None = None

    def report(self, failure: TelemetryFailure) -> None:
        """Record a failure to the local diagnostic stream and swallow it."""
        now = utc_now()
        kind = type(failure).__name__
        self._counts[kind] += 1
        self._first_failure_at = self._first_failure_at or now
        self._last_failure_at = now

        cause = failure.__cause__
        self._logger.warning(
            "%s on channel %s: %s%s",
            kind,
            failure.channel or "-",
            failure,
            f" ({type(cause).__name__}: {cause})" if cause is not None else "",
        )

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def count(self, kind: type[TelemetryFailure]) -> int:
        return self._counts[kind.__name__]

    def degraded_status(self) -> dict[str, Any]:
        """Return a minimal degraded-status snapshot."""
        return {
            "failures": dict(self._counts),
            "first_failure_at": self._first_failure_at,
            "last_failure_at": self._last_failure_at,
        }
