"""Long-running refresh service: startup refresh, interval scheduler, graceful shutdown"""

import logging
import signal
import sys
import threading

from apscheduler.schedulers.blocking import BlockingScheduler

from src.config import AppConfig
from src.services.refresh_orchestrator import RefreshOrchestrator
from src.services.sql_client import SqlServerClient
from src.services.telemetry import get_telemetry_service
from src.utils.config_loader import load_app_config
from src.utils.log_setup import setup_logging

logger = logging.getLogger(__name__)

# Process-wide resources, created by _startup_sync and released once by _shutdown_sync
_client: SqlServerClient | None = None
_refresh_orchestrator: RefreshOrchestrator | None = None
_scheduler: BlockingScheduler | None = None


def _startup_sync(app_config: AppConfig) -> None:
    """
    Connect, run the startup refresh and register the periodic job

    Raises:
        DatabaseQueryFailed: If the server cannot be reached at all
    """
    global _client, _refresh_orchestrator, _scheduler

    _client = SqlServerClient(app_config)
    _client.connect()

    _refresh_orchestrator = RefreshOrchestrator(_client, app_config=app_config)

    # The startup outcome is logged but never blocks scheduling
    if not _refresh_orchestrator.refresh():
        logger.error("Startup refresh failed; scheduled refreshes will continue")

    _scheduler = BlockingScheduler()
    _refresh_orchestrator.configure_scheduler_sync(
        scheduler=_scheduler,
        interval_seconds=app_config.refresh_interval_seconds,
        max_concurrent_jobs=1,
    )

    logger.info(
        "Database refresh scheduler started. "
        f"Will refresh every {app_config.refresh_interval_seconds} seconds."
    )


def _shutdown_sync() -> None:
    """Stop new cycles and close the connection pool; a running cycle is not aborted"""
    global _client, _refresh_orchestrator, _scheduler

    if _refresh_orchestrator:
        try:
            _refresh_orchestrator.stop_scheduler_sync()
        except Exception as e:
            logger.error(f"Error shutting down refresh orchestrator: {e}")

    if _scheduler and _scheduler.running:
        try:
            logger.info("Shutting down refresh scheduler")
            _scheduler.shutdown(wait=False)
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")

    if _client:
        try:
            _client.close()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")

    get_telemetry_service().shutdown()

    _client = None
    _refresh_orchestrator = None
    _scheduler = None


def _handle_signal(signum, frame) -> None:
    logger.info(f"Received {signal.Signals(signum).name}. Cleaning up...")
    raise SystemExit(0)


def _log_thread_exception(args: threading.ExceptHookArgs) -> None:
    """Log faults escaping worker threads without stopping the process"""
    thread_name = args.thread.name if args.thread else "unknown"
    logger.error(f"Unhandled exception in thread {thread_name}: {args.exc_value!r}")


def main() -> int:
    """
    Entry point for the refresh service

    Returns:
        int: Exit code (0 after a signal-initiated shutdown, 1 on a fatal error)
    """
    try:
        app_config = load_app_config()
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(app_config.log_file_path)
    get_telemetry_service(app_config)

    threading.excepthook = _log_thread_exception
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    exit_code = 0
    try:
        try:
            _startup_sync(app_config)
        except Exception as e:
            logger.error(f"Failed to start database management: {e}")
            return 1

        _scheduler.start()
    except SystemExit as e:
        exit_code = e.code if isinstance(e.code, int) else 0
    except Exception as e:
        logger.error(f"Fatal error in database management: {e}")
        exit_code = 1
    finally:
        _shutdown_sync()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
