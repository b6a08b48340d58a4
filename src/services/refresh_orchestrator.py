"""Orchestrates the scheduled drop, copy and re-attach of the refreshed database"""

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import AppConfig, config
from src.models.refresh_result import RefreshResult, TransferResult
from src.services.db_manager import DatabaseManager
from src.services.file_transfer import FileTransfer, SourceInaccessible
from src.services.retry import RetryExecutor
from src.services.snapshot import SnapshotProvider, build_snapshot_provider
from src.services.sql_client import DatabaseClient
from src.services.telemetry import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "db_refresh"


class RefreshState:
    """In-progress flag for refresh cycles; a second trigger is dropped, not queued"""

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def cycle(self) -> Iterator[bool]:
        """Yield True if this caller owns the cycle; released on every exit path"""
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()


class RefreshOrchestrator:
    """Orchestrates one database refresh at a time"""

    def __init__(
        self,
        client: DatabaseClient,
        app_config: AppConfig | None = None,
        snapshot_provider: SnapshotProvider | None = None,
        retry: RetryExecutor | None = None,
        telemetry: TelemetryService | None = None,
    ):
        """
        Initialize refresh orchestrator

        Args:
            client: Shared database client; never closed here
            app_config: Settings (default: global config)
            snapshot_provider: Volume snapshot capability (default: chosen for this host)
            retry: Retry executor shared by every step
            telemetry: Telemetry sink (default: global telemetry service)
        """
        self.config = app_config or config
        self.retry = retry or RetryExecutor(
            max_attempts=self.config.max_retry_attempts,
            delay_seconds=self.config.retry_delay_seconds,
        )
        self.db_manager = DatabaseManager(client, retry=self.retry, db_name=self.config.db_name)
        self.file_transfer = FileTransfer(
            snapshot_provider or build_snapshot_provider(self.config), retry=self.retry
        )
        self.telemetry = telemetry or get_telemetry_service(self.config)
        self.state = RefreshState()
        self.scheduler: BaseScheduler | None = None

    @property
    def destination_path(self) -> str:
        return os.path.join(
            self.config.destination_folder, os.path.basename(self.config.source_path)
        )

    def configure_scheduler_sync(
        self,
        scheduler: BaseScheduler,
        interval_seconds: int,
        max_concurrent_jobs: int = 1,
    ) -> None:
        """
        Register the periodic refresh job

        Args:
            scheduler: APScheduler instance (not started here)
            interval_seconds: Refresh interval in seconds
            max_concurrent_jobs: Maximum concurrent refresh jobs
        """
        self.scheduler = scheduler

        # First tick one interval from now; the startup run happens separately
        trigger = IntervalTrigger(
            seconds=interval_seconds,
            start_date=datetime.now() + timedelta(seconds=interval_seconds),
        )

        self.scheduler.add_job(
            self.scheduled_refresh,
            trigger=trigger,
            id=REFRESH_JOB_ID,
            name="Database Refresh",
            max_instances=max_concurrent_jobs,
            coalesce=True,
            replace_existing=True,
        )

        logger.info(f"Scheduled refresh every {interval_seconds} seconds")

    def stop_scheduler_sync(self) -> None:
        """Remove the refresh job so no new cycles start"""
        if self.scheduler:
            try:
                self.scheduler.remove_job(REFRESH_JOB_ID)
                logger.info("Stopped refresh scheduler")
            except JobLookupError:
                logger.warning("Refresh job not found during shutdown")

    def scheduled_refresh(self) -> None:
        """Timer entry point; a failing cycle never propagates to the scheduler"""
        try:
            logger.info("Starting scheduled database refresh...")
            self.refresh_once()
        except Exception as e:
            logger.error(f"Scheduled refresh failed: {e}")

    def refresh(self) -> bool:
        """Run one cycle; True only if every step completed"""
        return self.refresh_once().success

    def refresh_once(self) -> RefreshResult:
        """
        Execute single refresh cycle

        Process:
        1. Check whether the database exists
        2. Drop it if it does
        3. Copy the source file (snapshot, falling back to a direct copy) and hash it
        4. Attach the copied file as the database

        A cycle that fails after step 2 leaves no database until the next
        successful cycle; the dropped database is not restored.

        Returns:
            RefreshResult: Result of refresh operation. Never raises.
        """
        start_time = datetime.now()

        with self.state.cycle() as acquired:
            if not acquired:
                logger.info("Another refresh operation is in progress. Skipping this cycle.")
                result = self._result(
                    start_time, success=False, skipped=True, error="Refresh already in progress"
                )
            else:
                with self.telemetry.cycle_span():
                    result = self._run_cycle(start_time)

        self.telemetry.log_refresh(result)
        return result

    def _run_cycle(self, start_time: datetime) -> RefreshResult:
        logger.info("Starting database refresh process...")
        transfer: TransferResult | None = None

        try:
            if self.db_manager.exists():
                logger.info("Existing database found. Dropping...")
                self.db_manager.drop()

            transfer = self.copy_and_prepare_database()
            if not transfer.success:
                logger.error("Failed to refresh database.")
                return self._result(
                    start_time, success=False, transfer=transfer, error="Database file copy failed"
                )

            self.db_manager.create(transfer.destination_path)

            duration = (datetime.now() - start_time).total_seconds()
            logger.info(f"Database refreshed successfully! ({duration:.2f}s)")
            return self._result(start_time, success=True, transfer=transfer)

        except Exception as e:
            logger.error(f"Error in database refresh process: {e}")
            return self._result(start_time, success=False, transfer=transfer, error=str(e))

    def copy_and_prepare_database(self) -> TransferResult:
        """
        Copy the source data file into the destination folder and hash it

        Tries a snapshot copy first and a direct copy if the snapshot copy
        failed on every attempt. The logged digest is that of the live source;
        with verification on, a snapshot copy is compared with the snapshot
        and a direct copy with the live source.

        Returns:
            TransferResult: success=False on any failure; never raises
        """
        source = self.config.source_path
        destination = self.destination_path
        logger.info("Starting database file copy process...")

        try:
            if not self.file_transfer.is_accessible(source):
                raise SourceInaccessible("Source database file is not accessible")

            used_snapshot = True
            try:
                self.file_transfer.snapshot_copy(
                    source, destination, verify=self.config.verify_destination_hash
                )
            except Exception:
                logger.info("VSS copy failed, attempting fallback copy...")
                used_snapshot = False
                self.file_transfer.direct_copy(source, destination)

            file_hash = self.file_transfer.calculate_hash(source)
            logger.info(f"Source file SHA256: {file_hash}")

            # Snapshot copies were already checked against the snapshot-side file
            if self.config.verify_destination_hash and not used_snapshot:
                self.file_transfer.verify(destination, file_hash)

            logger.info("Database file copied successfully!")
            return TransferResult(
                success=True,
                destination_path=destination,
                file_hash=file_hash,
                used_snapshot=used_snapshot,
            )

        except Exception as e:
            logger.error(f"Error in file copy process: {e}")
            return TransferResult(success=False)

    def _result(
        self,
        start_time: datetime,
        success: bool,
        transfer: TransferResult | None = None,
        skipped: bool = False,
        error: str | None = None,
    ) -> RefreshResult:
        end_time = datetime.now()
        return RefreshResult(
            success=success,
            skipped=skipped,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=(end_time - start_time).total_seconds(),
            destination_path=transfer.destination_path if transfer else None,
            file_hash=transfer.file_hash if transfer else None,
            error=error,
        )
