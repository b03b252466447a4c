"""Telemetry record models.

Records are designed to be:
- Immutable once built (one record per served request).
- Faithful to what was transmitted: bodies are decoded from the exact bytes
  that crossed the wire, never from handler-side objects.
- JSON-serializable so a record can be shipped as a single log event message.
"""

from __future__ import annotations

import base64
import copy
import json
import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

SequenceToken: TypeAlias = str
RawHeaders: TypeAlias = Iterable[tuple[bytes, bytes]]


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


def epoch_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def normalize_headers(raw_headers: RawHeaders) -> dict[str, str]:
    """Convert ASGI header pairs into a str->str mapping.

    Names are lower-cased; repeated headers are joined with ", ".
    """
    headers: dict[str, str] = {}
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1").lower()
        value = raw_value.decode("latin-1")
        if name in headers:
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value
    return headers


def decode_body(payload: bytes, content_type: str | None) -> Any:
    """Decode a transmitted body for logging.

    - empty payload -> None
    - JSON content type -> parsed JSON (falls back to text if it does not parse)
    - UTF-8 text -> str
    - anything else -> {"base64": "..."}
    """
    if not payload:
        return None
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return {"base64": base64.b64encode(payload).decode("ascii")}
    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RequestSnapshot(_Model):
    """What the client sent: the full request body, read on arrival."""

    method: str
    path: str
    query: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None

    @field_validator("body", mode="before")
    def detach_body(cls, v: Any) -> Any:
        """Keep a private copy; the caller's object may change later."""
        return copy.deepcopy(v)


class ResponseSnapshot(_Model):
    """What was transmitted to the client, captured at the transmission point."""

    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None

    @field_validator("body", mode="before")
    def detach_body(cls, v: Any) -> Any:
        """Keep a private copy; the caller's object may change later."""
        return copy.deepcopy(v)


class LogRecord(_Model):
    """The unit shipped to the sink: one per served request.

    Frozen, and its snapshots own deep copies of their headers and bodies, so
    mutating the objects a record was built from does not change it.
    `to_payload` hands out a fresh copy as well. The nested containers are
    plain dicts/lists underneath and must not be mutated in place.
    """

    request: RequestSnapshot
    response: ResponseSnapshot
    elapsed_ms: float = Field(ge=0.0)
    started_at: datetime

    @property
    def response_time(self) -> str:
        """Elapsed handling time formatted as a duration."""
        return f"{self.elapsed_ms:.2f}ms"

    def to_payload(self) -> dict[str, Any]:
        """Structured form of the record (the shape stored in the sink)."""
        request = {
            "method": self.request.method,
            "path": self.request.path,
            "query": self.request.query,
            "headers": self.request.headers,
            "body": self.request.body,
        }
        payload = {
            # Flat request fields kept for readers of the older record shape.
            "method": self.request.method,
            "path": self.request.path,
            "headers": self.request.headers,
            "body": self.request.body,
            "timestamp": self.started_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "responseTime": self.response_time,
            "elapsedMs": self.elapsed_ms,
            "request": request,
            "response": {
                "statusCode": self.response.status_code,
                "headers": self.response.headers,
                "body": self.response.body,
            },
        }
        return copy.deepcopy(payload)

    def to_message(self) -> str:
        """Serialize the record to the JSON string used as the event message."""
        return json.dumps(self.to_payload(), separators=(",", ":"), ensure_ascii=False)


class ChannelState(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    FAILED = "failed"


@dataclass(frozen=True)
class LogChannel:
    """An append-only destination on the sink, owned by exactly one request."""

    name: str
    state: ChannelState = ChannelState.PENDING

    def with_state(self, state: ChannelState) -> LogChannel:
        return LogChannel(name=self.name, state=state)


@dataclass(frozen=True)
class LogEvent:
    """A single event submitted to the sink."""

    message: str
    timestamp: int


@dataclass(frozen=True)
class ChannelDescription:
    """Channel state as reported by the sink's describe call."""

    name: str
    upload_sequence_token: SequenceToken | None = None
