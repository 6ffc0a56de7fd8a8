# capacity_engine/run_api.py
"""Run capacity API server."""

import logging
import sys

import uvicorn

from capacity_engine.config import ApiSettings

settings = ApiSettings()

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    logger.info(f"Starting Capacity API on {settings.api_host}:{settings.api_port}")

    try:
        uvicorn.run(
            "capacity_engine.api.main:app",
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
