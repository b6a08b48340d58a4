"""Shared fixtures: in-memory SQL Server stand-in and directory-backed snapshots"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from src.config import AppConfig
from src.services.db_manager import DROP_SQL, EXISTS_SQL, AttachMode
from src.services.retry import RetryExecutor
from src.services.snapshot import SnapshotCreationFailed
from src.services.telemetry import TelemetryService

ATTACH_STATEMENTS = {mode.statement: mode for mode in AttachMode}


class FakeDatabaseClient:
    """Records statements and tracks which databases are attached"""

    def __init__(self):
        self.databases: dict[str, str] = {}
        self.statements: list[tuple[str, dict]] = []
        # Consumed one per call; an Exception entry is raised, None succeeds
        self.query_outcomes: list[Exception | None] = []
        self.drop_outcomes: list[Exception | None] = []
        self.attach_outcomes: list[Exception | None] = []
        self.closed = False

    @staticmethod
    def _next(outcomes: list[Exception | None]) -> None:
        if outcomes:
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome

    def query(self, statement, params=None):
        params = params or {}
        self.statements.append((statement, params))
        self._next(self.query_outcomes)
        if statement == EXISTS_SQL:
            return [(5,)] if params["name"] in self.databases else []
        return [(1,)]

    def execute(self, statement, params=None):
        params = params or {}
        self.statements.append((statement, params))
        if statement == DROP_SQL:
            self._next(self.drop_outcomes)
            self.databases.pop(params["name"], None)
        elif statement in ATTACH_STATEMENTS:
            self._next(self.attach_outcomes)
            self.databases[params["name"]] = params["filename"]

    def close(self):
        self.closed = True

    def count(self, statement: str) -> int:
        return sum(1 for executed, _ in self.statements if executed == statement)

    def attach_modes(self) -> list[AttachMode]:
        return [
            ATTACH_STATEMENTS[executed]
            for executed, _ in self.statements
            if executed in ATTACH_STATEMENTS
        ]


class DirectorySnapshotProvider:
    """Snapshots a directory by copying it aside"""

    def __init__(self, root: str):
        self.root = root
        self.fail_creates = 0
        self.fail_destroys = False
        self.created: list[str] = []
        self.destroyed: list[str] = []

    def create(self, directory: str) -> str:
        if self.fail_creates:
            self.fail_creates -= 1
            raise SnapshotCreationFailed("Shadow copy creation failed: access denied")
        snapshot_path = os.path.join(self.root, f"shadow{len(self.created) + 1}")
        shutil.copytree(directory, snapshot_path)
        self.created.append(snapshot_path)
        return snapshot_path

    def destroy(self, snapshot_path: str) -> None:
        self.destroyed.append(snapshot_path)
        if self.fail_destroys:
            raise RuntimeError("shadow copy is busy")
        shutil.rmtree(snapshot_path)


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def app_config(temp_dir):
    """Settings pointing every path into the temporary directory"""
    return AppConfig(
        db_name="TESTDB",
        source_path=os.path.join(temp_dir, "source", "TESTDB.mdf"),
        destination_folder=os.path.join(temp_dir, "attached"),
        log_file_path=os.path.join(temp_dir, "logs", "refresh.log"),
        max_retry_attempts=3,
        retry_delay_seconds=0,
        snapshot_enabled=False,
        verify_destination_hash=False,
        otel_logging_enabled=False,
        otel_tracing_enabled=False,
    )


@pytest.fixture
def source_file(app_config):
    """Source data file with known content"""
    path = Path(app_config.source_path)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"MDF" * 4096)
    return str(path)


@pytest.fixture
def sleeps():
    """Delays requested by the retry executor"""
    return []


@pytest.fixture
def retry(sleeps):
    """Retry executor that records delays instead of sleeping"""
    return RetryExecutor(max_attempts=3, delay_seconds=10, sleep=sleeps.append)


@pytest.fixture
def fake_client():
    return FakeDatabaseClient()


@pytest.fixture
def snapshot_provider(temp_dir):
    root = os.path.join(temp_dir, "snapshots")
    os.makedirs(root)
    return DirectorySnapshotProvider(root)


@pytest.fixture
def telemetry(app_config):
    return TelemetryService(app_config)
