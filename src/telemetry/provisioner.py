"""Channel provisioning: one freshly named channel per request."""

from __future__ import annotations

import asyncio
import logging
import uuid

from .errors import ChannelAlreadyExists, ChannelCreationFailure, FailureTracker
from .models import ChannelState, LogChannel
from .sinks import LogSink

logger = logging.getLogger("telemetry.provisioner")


def new_channel_name(prefix: str) -> str:
    """Return `<prefix>-<uuid4>`, unique with overwhelming probability."""
    return f"{prefix}-{uuid.uuid4()}"


class ChannelProvisioner:
    """Creates a uniquely named channel on the sink.

    Provisioning is best-effort: failures are reported to the tracker and the
    returned channel is marked `failed`; nothing is raised to the caller.
    """

    def __init__(self, *, sink: LogSink, log_group: str, prefix: str, tracker: FailureTracker) -> None:
        self._sink = sink
        self._log_group = log_group
        self._prefix = prefix
        self._tracker = tracker

    @property
    def log_group(self) -> str:
        return self._log_group

    async def provision(self) -> LogChannel:
        """Allocate a name and issue exactly one create call for it."""
        channel = LogChannel(name=new_channel_name(self._prefix))
        try:
            await asyncio.to_thread(self._sink.create_channel, self._log_group, channel.name)
        except ChannelAlreadyExists:
            # The channel is usable even though this call did not create it.
            logger.warning("channel %s already exists in %s; reusing it", channel.name, self._log_group)
            return channel.with_state(ChannelState.CREATED)
        except Exception as exc:  # noqa: BLE001 - logging must not fail the request
            failure = ChannelCreationFailure(f"could not create channel in {self._log_group}", channel=channel.name)
            failure.__cause__ = exc
            self._tracker.report(failure)
            return channel.with_state(ChannelState.FAILED)

        logger.debug("created channel %s in %s", channel.name, self._log_group)
        return channel.with_state(ChannelState.CREATED)
