"""CLI command for executing a single refresh cycle"""

import logging
import sys
from datetime import datetime

from src.services.refresh_orchestrator import RefreshOrchestrator
from src.services.sql_client import DatabaseQueryFailed, SqlServerClient
from src.utils.config_loader import load_app_config
from src.utils.log_setup import setup_logging


def main() -> int:
    """
    Main entry point for the one-shot refresh command

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    try:
        app_config = load_app_config()
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(app_config.log_file_path)
    logger = logging.getLogger(__name__)

    client = SqlServerClient(app_config)
    try:
        logger.info("Starting refresh operation")
        logger.info(f"Timestamp: {datetime.now().isoformat()}")

        client.connect()
        orchestrator = RefreshOrchestrator(client, app_config=app_config)
        result = orchestrator.refresh_once()

        if not result.success:
            logger.error(f"Refresh failed: {result.error}")
            return 1

        logger.info(f"Refresh completed successfully in {result.duration_seconds:.2f}s")
        return 0
    except DatabaseQueryFailed as e:
        logger.error(f"Cannot reach SQL Server: {e}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
