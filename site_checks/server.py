from __future__ import annotations

import os

import uvicorn

from site_checks.api import create_app
from site_checks.config import load_config
from site_checks.logging_setup import configure_logging


def serve(*, host: str | None = None, port: int | None = None, config_path: str | None = None) -> None:
    config = load_config(config_path)
    configure_logging(config.log_level)
    host = host or os.getenv("SITE_CHECKS_HOST", "0.0.0.0").strip() or "0.0.0.0"
    port = int(port or os.getenv("SITE_CHECKS_PORT", "8112"))
    uvicorn.run(create_app(config), host=host, port=port, log_level="info")


def main() -> None:
    serve()


if __name__ == "__main__":
    main()
