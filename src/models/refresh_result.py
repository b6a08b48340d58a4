"""Models for the database refresh cycle"""

from datetime import datetime

from pydantic import BaseModel, Field


class TransferResult(BaseModel):
    """Outcome of copying the source data file into the destination folder"""

    success: bool = Field(description="Whether the file reached the destination")
    destination_path: str | None = Field(default=None, description="Path of the copied file")
    file_hash: str | None = Field(
        default=None, min_length=64, max_length=64, description="SHA256 of the source file"
    )
    used_snapshot: bool = Field(
        default=False, description="Whether the copy came from a volume snapshot"
    )


class RefreshResult(BaseModel):
    """Result of a refresh operation"""

    success: bool = Field(description="Whether the refresh succeeded")
    skipped: bool = Field(
        default=False, description="True when another cycle was already running"
    )
    start_time: datetime = Field(description="When the refresh started")
    end_time: datetime = Field(description="When the refresh ended")
    duration_seconds: float = Field(description="Duration in seconds")
    destination_path: str | None = Field(
        default=None, description="Data file the database was attached from"
    )
    file_hash: str | None = Field(default=None, description="SHA256 of the source data file")
    error: str | None = Field(default=None, description="Error message if failed")
