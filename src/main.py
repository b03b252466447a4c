"""Process entrypoint.

Loads configuration, sets up local diagnostics, builds the shared recorder
and serves the API with uvicorn until interrupted. Shipments still in flight
at shutdown are drained by the application lifespan; anything lost to a hard
kill is simply lost.
"""

from __future__ import annotations

import uvicorn

from api import create_app_from_config
from config import load_config
from telemetry.diagnostics import configure_diagnostics


def main() -> None:
    """CLI entrypoint for `python src/main.py` / the `api-telemetry` script."""
    cfg = load_config()
    logger = configure_diagnostics(cfg.server.log_level, cfg.server.diagnostics_file)
    logger.info(
        "shipping request logs to %s sink, group %s (region %s)",
        cfg.sink.kind,
        cfg.sink.log_group,
        cfg.sink.region,
    )

    app = create_app_from_config(cfg)
    uvicorn.run(
        app,
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=cfg.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
