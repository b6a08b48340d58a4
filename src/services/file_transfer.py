"""Copy the source data file to its destination, from a snapshot when possible"""

import hashlib
import logging
import os
import shutil
from pathlib import Path

from src.services.retry import RetryExecutor
from src.services.snapshot import SnapshotCreationFailed, SnapshotProvider

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024


class SourceInaccessible(Exception):
    """Raised when the source data file cannot be read"""

    pass


class TransferVerificationFailed(Exception):
    """Raised when the destination digest differs from the source digest"""

    pass


def _sha256(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _check_digest(destination: str, actual: str, expected: str) -> None:
    if actual != expected:
        raise TransferVerificationFailed(
            f"Destination {destination} hash {actual} does not match source hash {expected}"
        )
    logger.info(f"Destination file verified: {destination}")


class FileTransfer:
    """Produces byte-identical copies of a file, each step retried"""

    def __init__(self, snapshot_provider: SnapshotProvider, retry: RetryExecutor | None = None):
        self.snapshot_provider = snapshot_provider
        self.retry = retry or RetryExecutor()

    @staticmethod
    def is_accessible(path: str | Path) -> bool:
        """Return True if path is a readable regular file; never raises"""
        try:
            return os.path.isfile(path) and os.access(path, os.R_OK)
        except (OSError, ValueError):
            return False

    def _require_source(self, source: str) -> None:
        if not self.is_accessible(source):
            raise SourceInaccessible(f"Source file {source} is not accessible")

    def snapshot_copy(self, source: str, destination: str, verify: bool = False) -> bool:
        """
        Copy source to destination through a point-in-time volume snapshot

        Args:
            source: Live data file
            destination: Target path
            verify: Compare the destination digest with the snapshot-side file
                before the snapshot is released; a mismatch fails the attempt

        Raises:
            RetryExhausted: If every attempt failed (SourceInaccessible,
                SnapshotCreationFailed, TransferVerificationFailed or copy
                errors underneath)
        """

        def _copy() -> bool:
            self._require_source(source)

            snapshot_dir = self.snapshot_provider.create(os.path.dirname(os.path.abspath(source)))
            if not snapshot_dir:
                raise SnapshotCreationFailed("Shadow path creation failed")

            try:
                snapshot_file = os.path.join(snapshot_dir, os.path.basename(source))
                Path(destination).parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(snapshot_file, destination)
                if verify:
                    _check_digest(destination, _sha256(destination), _sha256(snapshot_file))
            finally:
                self._destroy_snapshot(snapshot_dir)

            return True

        return self.retry.run(_copy, "VSS copy operation")

    def _destroy_snapshot(self, snapshot_dir: str) -> None:
        try:
            self.snapshot_provider.destroy(snapshot_dir)
        except Exception as e:
            logger.error(f"Failed to delete snapshot {snapshot_dir}: {e}")

    def direct_copy(self, source: str, destination: str) -> bool:
        """
        Copy source straight to destination

        Raises:
            RetryExhausted: If every attempt failed
        """

        def _copy() -> bool:
            self._require_source(source)
            Path(destination).parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
            return True

        return self.retry.run(_copy, "Fallback copy operation")

    def calculate_hash(self, path: str) -> str:
        """
        SHA256 hex digest of the file contents

        Raises:
            RetryExhausted: If the file could not be read on any attempt
        """

        return self.retry.run(lambda: _sha256(path), "File hash calculation")

    def verify(self, destination: str, expected_hash: str) -> None:
        """
        Check that destination has the expected digest

        Raises:
            TransferVerificationFailed: On mismatch
        """
        _check_digest(destination, self.calculate_hash(destination), expected_hash)
