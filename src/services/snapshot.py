"""Point-in-time volume snapshots used to copy a data file that is still in use"""

import logging
import os
import subprocess
import sys
import threading
from typing import Protocol

from src.config import AppConfig

logger = logging.getLogger(__name__)

SNAPSHOT_DIRECTORY_ENV = "DBREFRESH_SNAPSHOT_DIRECTORY"
SHADOW_ID_ENV = "DBREFRESH_SHADOW_ID"
CREATED_PREFIX = "ShadowID="

# Prints "ShadowID=<id>" as soon as the shadow exists, then
# "<shadow id>|<path of the directory inside the shadow copy>"
CREATE_SHADOW_SCRIPT = f"""
$ErrorActionPreference = 'Stop'
try {{
    $directory = $env:{SNAPSHOT_DIRECTORY_ENV}
    $volumeRoot = [System.IO.Path]::GetPathRoot($directory)
    $created = (Get-WmiObject -List Win32_ShadowCopy).Create($volumeRoot, 'ClientAccessible')
    if ($created.ReturnValue -ne 0) {{
        throw "Win32_ShadowCopy.Create returned $($created.ReturnValue)"
    }}
    Write-Output ('{CREATED_PREFIX}' + $created.ShadowID)
    $shadow = Get-WmiObject Win32_ShadowCopy | Where-Object {{ $_.ID -eq $created.ShadowID }}
    $relative = $directory.Substring($volumeRoot.Length)
    Write-Output ($shadow.ID + '|' + $shadow.DeviceObject + '\\' + $relative)
}} catch {{
    Write-Error $_.Exception.Message
    exit 1
}}
"""

DELETE_SHADOW_SCRIPT = f"""
$ErrorActionPreference = 'Stop'
Get-WmiObject Win32_ShadowCopy |
    Where-Object {{ $_.ID -eq $env:{SHADOW_ID_ENV} }} |
    ForEach-Object {{ $_.Delete() }}
"""


class SnapshotError(Exception):
    """Raised when the snapshot facility fails"""

    def __init__(self, message: str, stdout: str | None = None):
        super().__init__(message)
        self.stdout = stdout


class SnapshotCreationFailed(SnapshotError):
    """Raised when no usable snapshot path could be produced"""

    pass


class SnapshotProvider(Protocol):
    """Capability to snapshot the volume holding a directory"""

    def create(self, directory: str) -> str:
        """Snapshot the volume holding directory; return directory's path inside it"""
        ...

    def destroy(self, snapshot_path: str) -> None:
        """Delete the snapshot previously returned by create()"""
        ...


def parse_shadow_output(stdout: str) -> tuple[str, str]:
    """
    Parse the output of CREATE_SHADOW_SCRIPT

    Returns:
        (shadow_id, snapshot_path)

    Raises:
        SnapshotCreationFailed: If the output carries no snapshot path
    """
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    if not lines:
        raise SnapshotCreationFailed("Shadow path creation failed")

    shadow_id, _, snapshot_path = lines[-1].partition("|")
    if not shadow_id or not snapshot_path:
        raise SnapshotCreationFailed(f"Unexpected shadow copy output: {lines[-1]}")

    return shadow_id, snapshot_path


def created_shadow_id(stdout: str | bytes | None) -> str | None:
    """Return the shadow id announced by CREATE_SHADOW_SCRIPT, even if it did not finish"""
    if isinstance(stdout, bytes):
        stdout = stdout.decode(errors="replace")
    for line in (stdout or "").splitlines():
        line = line.strip()
        if line.startswith(CREATED_PREFIX) and len(line) > len(CREATED_PREFIX):
            return line[len(CREATED_PREFIX) :]
    return None


class VssSnapshotProvider:
    """Windows Volume Shadow Copy snapshots driven through PowerShell/WMI"""

    def __init__(self, timeout_seconds: int = 120, powershell: str = "powershell.exe"):
        self.timeout_seconds = timeout_seconds
        self.powershell = powershell
        self._shadow_ids: dict[str, str] = {}
        self._lock = threading.Lock()

    def _run(self, script: str, env_overrides: dict[str, str]) -> str:
        env = {**os.environ, **env_overrides}
        completed = subprocess.run(
            [self.powershell, "-NoProfile", "-NonInteractive", "-Command", script],
            capture_output=True,
            text=True,
            env=env,
            timeout=self.timeout_seconds,
        )
        if completed.returncode != 0:
            detail = completed.stderr.strip() or f"exit code {completed.returncode}"
            raise SnapshotError(detail, stdout=completed.stdout)
        return completed.stdout

    def create(self, directory: str) -> str:
        try:
            stdout = self._run(CREATE_SHADOW_SCRIPT, {SNAPSHOT_DIRECTORY_ENV: directory})
        except subprocess.TimeoutExpired as e:
            self._discard(created_shadow_id(e.stdout))
            raise SnapshotCreationFailed(f"Shadow copy creation failed: {e}") from e
        except SnapshotError as e:
            self._discard(created_shadow_id(e.stdout))
            raise SnapshotCreationFailed(f"Shadow copy creation failed: {e}") from e
        except OSError as e:
            raise SnapshotCreationFailed(f"Shadow copy creation failed: {e}") from e

        try:
            shadow_id, snapshot_path = parse_shadow_output(stdout)
        except SnapshotCreationFailed:
            self._discard(created_shadow_id(stdout))
            raise
        with self._lock:
            self._shadow_ids[snapshot_path] = shadow_id

        logger.info(f"Created shadow copy {shadow_id} for {directory}")
        return snapshot_path

    def _discard(self, shadow_id: str | None) -> None:
        """Delete a shadow whose creation did not complete; errors are logged"""
        if shadow_id is None:
            return
        try:
            self._run(DELETE_SHADOW_SCRIPT, {SHADOW_ID_ENV: shadow_id})
            logger.info(f"Deleted incomplete shadow copy {shadow_id}")
        except (SnapshotError, OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to delete incomplete shadow copy {shadow_id}: {e}")

    def destroy(self, snapshot_path: str) -> None:
        with self._lock:
            shadow_id = self._shadow_ids.pop(snapshot_path, None)

        if shadow_id is None:
            raise SnapshotError(f"Unknown snapshot path: {snapshot_path}")

        try:
            self._run(DELETE_SHADOW_SCRIPT, {SHADOW_ID_ENV: shadow_id})
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SnapshotError(f"Shadow copy deletion failed: {e}") from e

        logger.info(f"Deleted shadow copy {shadow_id}")


class UnavailableSnapshotProvider:
    """Provider for hosts without a snapshot facility; every transfer falls back"""

    def __init__(self, reason: str = "Volume snapshots are not available on this host"):
        self.reason = reason

    def create(self, directory: str) -> str:
        raise SnapshotCreationFailed(self.reason)

    def destroy(self, snapshot_path: str) -> None:
        pass


def build_snapshot_provider(app_config: AppConfig) -> SnapshotProvider:
    """Pick the snapshot provider for this host and configuration"""
    if not app_config.snapshot_enabled:
        return UnavailableSnapshotProvider("Volume snapshots are disabled by configuration")

    if sys.platform != "win32":
        return UnavailableSnapshotProvider(f"Volume snapshots are not supported on {sys.platform}")

    return VssSnapshotProvider(timeout_seconds=app_config.snapshot_timeout_seconds)
