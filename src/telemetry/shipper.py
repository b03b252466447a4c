"""Ordered event shipping.

The sink guards each channel with an upload sequence token. Shipping one
record is a two-step exchange:

1. describe the channel to learn its current token (none for an empty channel);
2. append a single event, presenting that token when one exists.

The two steps are not atomic. Each request owns its channel, so no other
writer competes for the token inside this process.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .errors import AppendFailure, FailureTracker, SnapshotCaptureFailure, TokenQueryFailure
from .models import ChannelDescription, LogChannel, LogEvent, LogRecord, SequenceToken, epoch_millis
from .sinks import LogSink

logger = logging.getLogger("telemetry.shipper")


def select_description(name: str, descriptions: Sequence[ChannelDescription]) -> ChannelDescription | None:
    """Pick the channel a prefix lookup refers to.

    Prefers the exact-name match; otherwise the first entry in the sink's order.
    """
    for description in descriptions:
        if description.name == name:
            return description
    return descriptions[0] if descriptions else None


class EventShipper:
    """Submits one record per call to its channel. Never raises, never retries."""

    def __init__(self, *, sink: LogSink, log_group: str, tracker: FailureTracker) -> None:
        self._sink = sink
        self._log_group = log_group
        self._tracker = tracker

    async def resolve_token(self, channel: LogChannel) -> SequenceToken | None:
        """Return the channel's current upload token (None when it has none).

        Raises:
        - `TokenQueryFailure` when the describe call fails or finds nothing.
        """
        try:
            descriptions = await asyncio.to_thread(self._sink.describe_channels, self._log_group, channel.name)
        except Exception as exc:  # noqa: BLE001 - classify and report
            raise TokenQueryFailure("describe call failed", channel=channel.name) from exc

        description = select_description(channel.name, descriptions)
        if description is None:
            raise TokenQueryFailure("describe returned no matching channel", channel=channel.name)
        return description.upload_sequence_token

    async def ship(self, channel: LogChannel, record: LogRecord) -> None:
        """Resolve the token and append `record` as a single event."""
        try:
            message = record.to_message()
        except Exception as exc:  # noqa: BLE001 - non-serializable payloads
            failure = SnapshotCaptureFailure("record is not serializable", channel=channel.name)
            failure.__cause__ = exc
            self._tracker.report(failure)
            return

        try:
            token = await self.resolve_token(channel)
        except TokenQueryFailure as failure:
            self._tracker.report(failure)
            return

        # Timestamp is submission time, not the request's start time.
        events = [LogEvent(message=message, timestamp=epoch_millis())]
        try:
            await asyncio.to_thread(self._sink.put_events, self._log_group, channel.name, events, token)
        except Exception as exc:  # noqa: BLE001 - logging must not fail the request
            failure = AppendFailure("append rejected", channel=channel.name)
            failure.__cause__ = exc
            self._tracker.report(failure)
            return

        logger.debug("shipped record to %s (token=%s)", channel.name, token)
