"""Batchgate API server entry point.

Usage:
    batchgate-server
    batchgate-server --config /etc/batchgate.yaml --port 50111
    batchgate-server --log-level debug --log-format json
"""
from __future__ import annotations

import argparse
import logging
import sys

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Batchgate API Server")
    parser.add_argument("--host", default=None, help="Bind address (default: settings host)")
    parser.add_argument("--port", type=int, default=None, help="Port (default: settings port)")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--db", default=None, help="Job registry SQLite path")
    parser.add_argument("--log-level", default=None, choices=["debug", "info", "warning", "error"])
    parser.add_argument("--log-format", default=None, choices=["plain", "json"])
    args = parser.parse_args()

    import uvicorn

    from batchgate.api.config import ApiSettings
    from batchgate.api.main import create_app
    from batchgate.config import load_config
    from batchgate.utils.logging import configure_logging

    overrides = {
        "host": args.host,
        "port": args.port,
        "config_path": args.config,
        "job_db_path": args.db,
        "log_level": args.log_level.upper() if args.log_level else None,
        "log_format": args.log_format,
    }
    settings = ApiSettings(**{k: v for k, v in overrides.items() if v is not None})
    configure_logging(settings.log_level, settings.log_format)

    try:
        cfg = load_config(settings.config_path)
    except (OSError, ValueError) as exc:
        logger.error("Cannot load configuration: %s", exc)
        sys.exit(1)

    app = create_app(settings, cfg=cfg)
    logger.info("Starting Batchgate API on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
