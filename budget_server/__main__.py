"""
Budget Server - Entry Point

PURPOSE: Load configuration and serve the application with uvicorn
"""

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from .app import create_app
from .config import AppConfig, configure_logging
from .errors import ConfigError

logger = logging.getLogger(__name__)


def main() -> int:
    load_dotenv()
    configure_logging()

    try:
        config = AppConfig.from_env()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    logger.info("Server running on http://%s", config.bind_address)
    uvicorn.run(create_app(config), host=config.host, port=config.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
