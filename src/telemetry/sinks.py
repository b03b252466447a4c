"""Log sinks (append-only channel storage backends).

Every sink speaks the same channel protocol:

- Channels are created explicitly, inside a log group, and never reused.
- Each channel carries an upload sequence token that advances on every
  successful append. An append to a channel that already holds events must
  present the current token; an append to an empty channel must present none.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import boto3
import duckdb
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ChannelAlreadyExists, ChannelNotFound, InvalidSequenceToken, SinkError
from .models import ChannelDescription, LogEvent, SequenceToken, utc_now


class LogSink(Protocol):
    """A synchronous sink for log events.

    Sinks are intentionally synchronous; the pipeline runs each call in a worker
    thread so the event loop serving requests is never blocked. Implementations
    must be safe to call from several threads at once.
    """

    def create_channel(self, group: str, name: str) -> None:
        """Create a channel; raise `ChannelAlreadyExists` on a duplicate name."""

    def describe_channels(self, group: str, prefix: str) -> list[ChannelDescription]:
        """Return channels whose name starts with `prefix`, ordered by name."""

    def put_events(
        self,
        group: str,
        name: str,
        events: Sequence[LogEvent],
        sequence_token: SequenceToken | None = None,
    ) -> SequenceToken | None:
        """Append events and return the channel's next sequence token."""

    def close(self) -> None:
        """Close any underlying resources."""


@dataclass
class _Channel:
    token: SequenceToken | None = None
    events: list[LogEvent] = field(default_factory=list)


def _next_token(event_count: int) -> SequenceToken:
    # Opaque to callers; zero-padded so tokens also sort in append order.
    return f"{event_count:056d}"


def _check_token(name: str, current: SequenceToken | None, supplied: SequenceToken | None) -> None:
    if supplied != current:
        raise InvalidSequenceToken(
            f"The given sequenceToken is invalid for channel {name!r}. The next expected sequenceToken is: {current}",
            expected=current,
        )


class InMemoryLogSink:
    """In-memory sink for tests and local debugging.

    Every call is appended to `calls` as `(operation, channel_name, detail)` in
    the order it reached the sink. `fail` maps an operation name
    (`create_channel`, `describe_channels`, `put_events`) to an exception that
    the next and all later calls of that operation raise.
    """

    def __init__(self) -> None:
        """Create an empty in-memory sink."""
        self._lock = threading.Lock()
        self._groups: dict[str, dict[str, _Channel]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.fail: dict[str, BaseException] = {}
        self.closed = False

    def _maybe_fail(self, operation: str) -> None:
        exc = self.fail.get(operation)
        if exc is not None:
            raise exc

    def create_channel(self, group: str, name: str) -> None:
        """Create a channel in `group` (groups are created on first use)."""
        with self._lock:
            self.calls.append(("create_channel", name, group))
            self._maybe_fail("create_channel")
            channels = self._groups.setdefault(group, {})
            if name in channels:
                raise ChannelAlreadyExists(f"The specified log stream already exists: {name}")
            channels[name] = _Channel()

    def describe_channels(self, group: str, prefix: str) -> list[ChannelDescription]:
        """Return matching channels with their current upload tokens."""
        with self._lock:
            self.calls.append(("describe_channels", prefix, group))
            self._maybe_fail("describe_channels")
            if group not in self._groups:
                raise ChannelNotFound(f"The specified log group does not exist: {group}")
            return [
                ChannelDescription(name=name, upload_sequence_token=channel.token)
                for name, channel in sorted(self._groups[group].items())
                if name.startswith(prefix)
            ]

    def put_events(
        self,
        group: str,
        name: str,
        events: Sequence[LogEvent],
        sequence_token: SequenceToken | None = None,
    ) -> SequenceToken | None:
        """Append events after validating the supplied token."""
        with self._lock:
            self.calls.append(("put_events", name, sequence_token))
            self._maybe_fail("put_events")
            channel = self._groups.get(group, {}).get(name)
            if channel is None:
                raise ChannelNotFound(f"The specified log stream does not exist: {name}")
            _check_token(name, channel.token, sequence_token)
            channel.events.extend(events)
            channel.token = _next_token(len(channel.events))
            return channel.token

    def close(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""
        self.closed = True

    def events(self, group: str, name: str) -> list[LogEvent]:
        """Return a point-in-time copy of a channel's events."""
        with self._lock:
            channel = self._groups.get(group, {}).get(name)
            return list(channel.events) if channel is not None else []

    def channel_names(self, group: str) -> list[str]:
        """Return the names of all channels in a group."""
        with self._lock:
            return sorted(self._groups.get(group, {}))


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    channels_table: str = "log_channels"
    events_table: str = "log_events"


class DuckDBLogSink:
    """DuckDB sink for durable local persistence.

    Useful for development without a remote service; it enforces the same
    sequence-token protocol as the remote sink.
    """

    def __init__(self, *, path: str | Path) -> None:
        """Create (or open) a DuckDB-backed sink at the given path."""
        self._opts = DuckDBOptions(path=Path(path))
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(self._opts.path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create the backing tables if they do not exist yet."""
        with self._lock:
            self._conn.execute(
                f"""
                create table if not exists {self._opts.channels_table} (
                  group_name varchar not null,
                  channel_name varchar not null,
                  created_at timestamptz not null,
                  sequence_token varchar,
                  event_count bigint not null default 0
                )
                """
            )
            self._conn.execute(
                f"""
                create table if not exists {self._opts.events_table} (
                  group_name varchar not null,
                  channel_name varchar not null,
                  seq bigint not null,
                  event_timestamp bigint not null,
                  message varchar not null
                )
                """
            )

    def _fetch_channel(self, group: str, name: str) -> tuple[SequenceToken | None, int] | None:
        row = self._conn.execute(
            f"select sequence_token, event_count from {self._opts.channels_table} "
            "where group_name = ? and channel_name = ?",
            [group, name],
        ).fetchone()
        if row is None:
            return None
        return row[0], int(row[1])

    def create_channel(self, group: str, name: str) -> None:
        with self._lock:
            if self._fetch_channel(group, name) is not None:
                raise ChannelAlreadyExists(f"The specified log stream already exists: {name}")
            self._conn.execute(
                f"insert into {self._opts.channels_table} (group_name, channel_name, created_at) values (?, ?, ?)",
                [group, name, utc_now()],
            )

    def describe_channels(self, group: str, prefix: str) -> list[ChannelDescription]:
        with self._lock:
            rows = self._conn.execute(
                f"select channel_name, sequence_token from {self._opts.channels_table} "
                "where group_name = ? and starts_with(channel_name, ?) order by channel_name",
                [group, prefix],
            ).fetchall()
        return [ChannelDescription(name=row[0], upload_sequence_token=row[1]) for row in rows]

    def put_events(
        self,
        group: str,
        name: str,
        events: Sequence[LogEvent],
        sequence_token: SequenceToken | None = None,
    ) -> SequenceToken | None:
        with self._lock:
            current = self._fetch_channel(group, name)
            if current is None:
                raise ChannelNotFound(f"The specified log stream does not exist: {name}")
            token, count = current
            _check_token(name, token, sequence_token)

            rows = [[group, name, count + i, event.timestamp, event.message] for i, event in enumerate(events)]
            next_token = _next_token(count + len(rows))
            self._conn.execute("begin transaction")
            try:
                if rows:
                    self._conn.executemany(
                        f"insert into {self._opts.events_table} "
                        "(group_name, channel_name, seq, event_timestamp, message) values (?, ?, ?, ?, ?)",
                        rows,
                    )
                self._conn.execute(
                    f"update {self._opts.channels_table} set sequence_token = ?, event_count = ? "
                    "where group_name = ? and channel_name = ?",
                    [next_token, count + len(rows), group, name],
                )
            except Exception:
                self._conn.execute("rollback")
                raise
            self._conn.execute("commit")
            return next_token

    def messages(self, group: str, name: str) -> list[str]:
        """Return stored messages of a channel in append order."""
        with self._lock:
            rows = self._conn.execute(
                f"select message from {self._opts.events_table} "
                "where group_name = ? and channel_name = ? order by seq",
                [group, name],
            ).fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()


_TOKEN_ERRORS = {"InvalidSequenceTokenException", "DataAlreadyAcceptedException"}


def _translate_client_error(exc: ClientError, name: str) -> SinkError:
    """Map a CloudWatch Logs error response onto the sink exceptions."""
    error = exc.response.get("Error", {})
    code = error.get("Code", "")
    message = error.get("Message") or str(exc)
    if code == "ResourceAlreadyExistsException":
        return ChannelAlreadyExists(message)
    if code == "ResourceNotFoundException":
        return ChannelNotFound(message)
    if code in _TOKEN_ERRORS:
        return InvalidSequenceToken(message, expected=exc.response.get("expectedSequenceToken"))
    return SinkError(f"{code or 'ClientError'} for {name}: {message}")


class CloudWatchLogSink:
    """CloudWatch Logs sink backed by a single shared boto3 client.

    boto3 clients are thread-safe, so one client (and its connection pool)
    serves every request's worker-thread calls. Credentials come from the
    standard AWS provider chain. Client-side retries are disabled: the
    pipeline makes exactly one attempt per call.
    """

    def __init__(
        self,
        *,
        region: str,
        endpoint_url: str | None = None,
        max_pool_connections: int = 50,
        client: Any | None = None,
    ) -> None:
        """Create a sink for the given region (or wrap a prebuilt client)."""
        if client is None:
            client_kwargs: dict[str, Any] = {
                "service_name": "logs",
                "region_name": region,
                "config": BotoConfig(
                    max_pool_connections=max_pool_connections,
                    retries={"total_max_attempts": 1, "mode": "standard"},
                ),
            }
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self._client = client

    def create_channel(self, group: str, name: str) -> None:
        try:
            self._client.create_log_stream(logGroupName=group, logStreamName=name)
        except ClientError as exc:
            raise _translate_client_error(exc, name) from exc
        except BotoCoreError as exc:
            raise SinkError(f"create_log_stream failed for {name}: {exc}") from exc

    def describe_channels(self, group: str, prefix: str) -> list[ChannelDescription]:
        try:
            response = self._client.describe_log_streams(logGroupName=group, logStreamNamePrefix=prefix)
        except ClientError as exc:
            raise _translate_client_error(exc, prefix) from exc
        except BotoCoreError as exc:
            raise SinkError(f"describe_log_streams failed for {prefix}: {exc}") from exc
        return [
            ChannelDescription(name=stream["logStreamName"], upload_sequence_token=stream.get("uploadSequenceToken"))
            for stream in response.get("logStreams", [])
        ]

    def put_events(
        self,
        group: str,
        name: str,
        events: Sequence[LogEvent],
        sequence_token: SequenceToken | None = None,
    ) -> SequenceToken | None:
        params: dict[str, Any] = {
            "logGroupName": group,
            "logStreamName": name,
            "logEvents": [{"timestamp": event.timestamp, "message": event.message} for event in events],
        }
        if sequence_token is not None:
            params["sequenceToken"] = sequence_token
        try:
            response = self._client.put_log_events(**params)
        except ClientError as exc:
            raise _translate_client_error(exc, name) from exc
        except BotoCoreError as exc:
            raise SinkError(f"put_log_events failed for {name}: {exc}") from exc

        rejected = response.get("rejectedLogEventsInfo")
        if rejected:
            raise SinkError(f"put_log_events rejected events for {name}: {rejected}")
        return response.get("nextSequenceToken")

    def close(self) -> None:
        """Close the client's connection pool."""
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
