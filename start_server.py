"""
Start the chat backend server for local development
"""
import sys

import uvicorn

from app.core.config import settings
from app.core.logging import get_logger, setup_logging

logger = get_logger("start_server")

if __name__ == "__main__":
    setup_logging()
    logger.info("Starting chat backend server...")
    logger.info(f"Python: {sys.version}")

    try:
        uvicorn.run(
            "app.main:app",
            host="127.0.0.1",
            port=8000,
            reload=settings.debug,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        raise
