"""Command-line entrypoint: ``python -m gitsync`` or ``gitsync``."""

import logging
import sys

import uvicorn

from gitsync.config import get_settings
from gitsync.core.exceptions import ConfigError
from gitsync.core.logging import setup_logging
from gitsync.main import create_app
from gitsync.services.config_loader import load_config

logger = logging.getLogger("gitsync")


def main() -> int:
    settings = get_settings()
    setup_logging(settings)
    try:
        config = load_config(settings.config_path, settings.example_config_path)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    app = create_app(settings, config)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=config.webhook.port,
        log_config=None,
        access_log=settings.debug,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
