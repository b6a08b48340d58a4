"""Integration tests for the one-shot refresh command"""

from datetime import datetime
from unittest.mock import patch

import pytest

from src.models.refresh_result import RefreshResult
from src.refresh import main
from src.services.sql_client import DatabaseQueryFailed


def _result(success: bool) -> RefreshResult:
    now = datetime.now()
    return RefreshResult(
        success=success,
        start_time=now,
        end_time=now,
        duration_seconds=0.5,
        error=None if success else "Database file copy failed",
    )


class TestRefreshCommand:
    @pytest.fixture
    def mocks(self, app_config):
        with patch("src.refresh.load_app_config", return_value=app_config):
            with patch("src.refresh.setup_logging"):
                with patch("src.refresh.SqlServerClient") as mock_client_class:
                    with patch("src.refresh.RefreshOrchestrator") as mock_orchestrator_class:
                        yield mock_client_class.return_value, mock_orchestrator_class.return_value

    def test_success_exits_zero(self, mocks):
        client, orchestrator = mocks
        orchestrator.refresh_once.return_value = _result(True)

        assert main() == 0
        client.connect.assert_called_once()
        client.close.assert_called_once()

    def test_failed_refresh_exits_one(self, mocks):
        client, orchestrator = mocks
        orchestrator.refresh_once.return_value = _result(False)

        assert main() == 1
        client.close.assert_called_once()

    def test_unreachable_server_exits_one(self, mocks):
        client, orchestrator = mocks
        client.connect.side_effect = DatabaseQueryFailed("Login timeout expired")

        assert main() == 1
        orchestrator.refresh_once.assert_not_called()
        client.close.assert_called_once()
