"""HTTP telemetry capture-and-ship pipeline.

This package provides:
- An ASGI middleware that captures each request/response pair at the point
  the response is transmitted.
- A per-request channel provisioner and an ordered event shipper speaking the
  sink's sequence-token protocol.
- Sink backends (CloudWatch Logs, DuckDB, in-memory).

Logging is strictly a side channel: every failure is logged locally and
discarded, and the served response is never delayed or altered.
"""

from .errors import (
    AppendFailure,
    ChannelAlreadyExists,
    ChannelCreationFailure,
    ChannelNotFound,
    FailureTracker,
    InvalidSequenceToken,
    SinkError,
    SnapshotCaptureFailure,
    TelemetryFailure,
    TokenQueryFailure,
)
from .interceptor import TelemetryMiddleware
from .models import ChannelDescription, ChannelState, LogChannel, LogEvent, LogRecord, RequestSnapshot, ResponseSnapshot
from .provisioner import ChannelProvisioner
from .recorder import TelemetryRecorder
from .shipper import EventShipper
from .sinks import CloudWatchLogSink, DuckDBLogSink, InMemoryLogSink, LogSink

__all__ = [
    "AppendFailure",
    "ChannelAlreadyExists",
    "ChannelCreationFailure",
    "ChannelDescription",
    "ChannelNotFound",
    "ChannelProvisioner",
    "ChannelState",
    "CloudWatchLogSink",
    "DuckDBLogSink",
    "EventShipper",
    "FailureTracker",
    "InMemoryLogSink",
    "InvalidSequenceToken",
    "LogChannel",
    "LogEvent",
    "LogRecord",
    "LogSink",
    "RequestSnapshot",
    "ResponseSnapshot",
    "SinkError",
    "SnapshotCaptureFailure",
    "TelemetryFailure",
    "TelemetryMiddleware",
    "TelemetryRecorder",
    "TokenQueryFailure",
]
