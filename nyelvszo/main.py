"""
nyelvszo real-time server - main entry point.

Run with ``python -m nyelvszo.main``. Host and port come from the SERVER_*
environment variables.
"""

import uvicorn

from .app.factory import create_app
from .config import get_config
from .structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging


def main() -> None:
    """Configure logging and serve the application with uvicorn."""
    config = get_config()
    # Logging must be configured before the first logger is used
    setup_enhanced_logging({"logging": config.logging.to_dict()})
    logger = get_logger(__name__)
    logger.info("Logging setup completed", environment=config.logging.environment)

    app = create_app(config)
    logger.info("Starting uvicorn", host=config.server.host, port=config.server.port)
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
