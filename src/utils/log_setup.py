"""Logging configuration shared by the service and the one-shot CLI"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class IsoUtcFormatter(logging.Formatter):
    """
    Formatter that stamps records with an ISO-8601 UTC timestamp

    The sink has two levels: WARNING and above is written as ERROR,
    everything below as INFO.
    """

    def format(self, record):
        sink_level = "ERROR" if record.levelno >= logging.WARNING else "INFO"
        if record.levelname != sink_level:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = sink_level
        return super().format(record)

    def formatTime(self, record, datefmt=None):  # noqa: N802
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def setup_logging(log_file_path: str | Path, level: int = logging.INFO) -> None:
    """
    Configure root logging: append-only log file plus stdout

    The log file is never truncated or rotated here.

    Args:
        log_file_path: File that receives one line per event
        level: Minimum level to emit
    """
    log_file = Path(log_file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = IsoUtcFormatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[file_handler, stream_handler], force=True)

    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
