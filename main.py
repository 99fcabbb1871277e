"""
Order Service Entry Point
=========================
Owns the process lifecycle:
- logging setup
- configuration validation (fail fast)
- database handle open/close
- engine + API wiring
- uvicorn server
"""

import logging

import uvicorn

from api import create_app
from config import ConfigurationError, get_config, validate_configuration
from db import Database
from order import OrderTransactionEngine


logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_service(config) -> tuple:
    """
    Open the database and wire the engine and app.

    Returns:
        (database, engine, app)
    """
    database = Database.from_config(config.database)
    database.create_schema()

    engine = OrderTransactionEngine.from_config(database, config)
    app = create_app(engine, database)

    return database, engine, app


def main():
    """Run the order service."""
    configure_logging()

    try:
        config = get_config()
        validate_configuration()
    except ConfigurationError as e:
        logger.error(f"Refusing to start: {str(e)}")
        raise SystemExit(1)

    logging.getLogger().setLevel(config.server.log_level)

    database, _, app = build_service(config)

    logger.info(f"Starting server on {config.server.host}:{config.server.port}")

    try:
        uvicorn.run(
            app,
            host=config.server.host,
            port=config.server.port,
            log_level=config.server.log_level.lower(),
            access_log=True
        )
    finally:
        database.dispose()
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
