"""FastAPI application factory.

The recorder (and the sink client inside it) is built once per process and
shared by reference with every request; nothing is reconstructed per request.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import AppConfig, SinkConfig
from telemetry import CloudWatchLogSink, DuckDBLogSink, InMemoryLogSink, LogSink, TelemetryMiddleware, TelemetryRecorder

from .routes import router

logger = logging.getLogger("telemetry.app")


def build_sink(config: SinkConfig) -> LogSink:
    """Construct the configured sink backend."""
    if config.kind == "memory":
        return InMemoryLogSink()
    if config.kind == "duckdb":
        return DuckDBLogSink(path=config.duckdb_path)
    return CloudWatchLogSink(
        region=config.region,
        endpoint_url=config.endpoint_url,
        max_pool_connections=config.max_pool_connections,
    )


def build_recorder(config: SinkConfig, *, sink: LogSink | None = None) -> TelemetryRecorder:
    """Create the process-wide recorder for the configured log group."""
    return TelemetryRecorder(
        sink=sink if sink is not None else build_sink(config),
        log_group=config.log_group,
        channel_prefix=config.stream_prefix,
    )


def create_app(recorder: TelemetryRecorder) -> FastAPI:
    """Create the API with telemetry capture installed in front of every route."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        status = recorder.degraded_status()
        await recorder.aclose()
        logger.info("telemetry recorder closed; failures=%s", status["failures"])

    app = FastAPI(title="api-telemetry", lifespan=lifespan)
    app.include_router(router)
    app.add_middleware(TelemetryMiddleware, recorder=recorder)
    return app


def create_app_from_config(config: AppConfig) -> FastAPI:
    return create_app(build_recorder(config.sink))
