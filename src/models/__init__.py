"""Data models for the refresh service"""

from src.models.refresh_result import RefreshResult, TransferResult

__all__ = [
    "RefreshResult",
    "TransferResult",
]
