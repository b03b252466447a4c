"""Process-wide coordinator that runs provisioning and shipping in the background."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .errors import FailureTracker, TelemetryFailure
from .models import ChannelState, LogChannel, LogRecord
from .provisioner import ChannelProvisioner
from .shipper import EventShipper
from .sinks import LogSink

logger = logging.getLogger("telemetry.recorder")


class TelemetryRecorder:
    """Owns the sink, the pipeline components and their detached tasks.

    The request-serving path only ever starts tasks here; it never awaits them.
    Per request the order is fixed: the channel is created, then its token is
    queried, then the record is appended.
    """

    def __init__(
        self,
        *,
        sink: LogSink,
        log_group: str,
        channel_prefix: str,
        tracker: FailureTracker | None = None,
    ) -> None:
        """Create a recorder backed by a synchronous sink.

        Args:
            sink: Storage backend, shared by every request (must be thread-safe).
            log_group: Namespace that holds the per-request channels.
            channel_prefix: Stable label prepended to each channel name.
            tracker: Failure tracker shared by the pipeline components.
        """
        self._sink = sink
        self._tracker = tracker or FailureTracker()
        self.provisioner = ChannelProvisioner(
            sink=sink, log_group=log_group, prefix=channel_prefix, tracker=self._tracker
        )
        self.shipper = EventShipper(sink=sink, log_group=log_group, tracker=self._tracker)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of background tasks still running."""
        return len(self._tasks)

    def _spawn(self, coro: Any, *, name: str) -> asyncio.Task[Any]:
        # Keep a strong reference until the task finishes.
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def open_channel(self) -> asyncio.Task[LogChannel] | None:
        """Start provisioning a channel for a new request (non-blocking).

        Returns None once the recorder is closed.
        """
        if self._closed:
            return None
        return self._spawn(self.provisioner.provision(), name="telemetry-provision")

    def submit(self, channel: asyncio.Task[LogChannel], record: LogRecord) -> None:
        """Ship `record` once `channel` is provisioned (non-blocking)."""
        if self._closed:
            return
        self._spawn(self._ship_when_ready(channel, record), name="telemetry-ship")

    async def _ship_when_ready(self, channel_task: asyncio.Task[LogChannel], record: LogRecord) -> None:
        channel = await channel_task
        if channel.state is not ChannelState.CREATED:
            logger.debug("skipping append for %s (channel %s)", channel.name, channel.state.value)
            return
        await self.shipper.ship(channel, record)

    def report(self, failure: TelemetryFailure) -> None:
        """Hand a failure from outside the pipeline (e.g. capture) to the tracker."""
        self._tracker.report(failure)

    async def drain(self) -> None:
        """Wait until every outstanding background task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Flush outstanding shipments and close the sink.

        Safe to call multiple times.
        """
        if self._closed:
            return
        self._closed = True
        await self.drain()
        await asyncio.to_thread(self._sink.close)

    def degraded_status(self) -> dict[str, Any]:
        """Return a minimal degraded-status snapshot."""
        return {**self._tracker.degraded_status(), "pending": self.pending}
