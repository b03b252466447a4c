"""HTTP surface: the demo routes plus the telemetry middleware."""

from .app import build_recorder, build_sink, create_app, create_app_from_config

__all__ = ["build_recorder", "build_sink", "create_app", "create_app_from_config"]
