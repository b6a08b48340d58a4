"""Integration tests for service startup, shutdown and signal handling"""

import signal
from unittest.mock import MagicMock, patch

import pytest

import src.service
from src.service import _handle_signal, _shutdown_sync, _startup_sync, main
from src.services.sql_client import DatabaseQueryFailed


@pytest.fixture(autouse=True)
def reset_globals():
    yield
    src.service._client = None
    src.service._refresh_orchestrator = None
    src.service._scheduler = None


class TestServiceStartup:
    """Test wiring of client, orchestrator and scheduler on startup"""

    def test_startup_runs_refresh_then_schedules(self, app_config):
        """Test the startup refresh runs before the periodic job is registered"""
        with patch("src.service.SqlServerClient") as mock_client_class:
            with patch("src.service.RefreshOrchestrator") as mock_orchestrator_class:
                with patch("src.service.BlockingScheduler") as mock_scheduler_class:
                    mock_client = mock_client_class.return_value
                    mock_orchestrator = mock_orchestrator_class.return_value
                    mock_scheduler = mock_scheduler_class.return_value

                    _startup_sync(app_config)

                    mock_client.connect.assert_called_once()
                    mock_orchestrator_class.assert_called_once_with(
                        mock_client, app_config=app_config
                    )
                    mock_orchestrator.refresh.assert_called_once()
                    mock_orchestrator.configure_scheduler_sync.assert_called_once_with(
                        scheduler=mock_scheduler,
                        interval_seconds=180,
                        max_concurrent_jobs=1,
                    )

    def test_failed_startup_refresh_still_schedules(self, app_config, caplog):
        """Test the startup outcome does not gate scheduling"""
        with patch("src.service.SqlServerClient"):
            with patch("src.service.RefreshOrchestrator") as mock_orchestrator_class:
                with patch("src.service.BlockingScheduler"):
                    mock_orchestrator = mock_orchestrator_class.return_value
                    mock_orchestrator.refresh.return_value = False

                    _startup_sync(app_config)

                    mock_orchestrator.configure_scheduler_sync.assert_called_once()
        assert "Startup refresh failed; scheduled refreshes will continue" in caplog.messages

    def test_startup_connection_failure_is_fatal(self, app_config):
        """Test an unreachable server aborts startup before any refresh"""
        with patch("src.service.SqlServerClient") as mock_client_class:
            with patch("src.service.RefreshOrchestrator") as mock_orchestrator_class:
                mock_client_class.return_value.connect.side_effect = DatabaseQueryFailed(
                    "Login timeout expired"
                )

                with pytest.raises(DatabaseQueryFailed):
                    _startup_sync(app_config)

                mock_orchestrator_class.assert_not_called()


class TestServiceShutdown:
    """Test graceful shutdown"""

    def test_shutdown_stops_scheduler_and_closes_client(self):
        mock_client = MagicMock()
        mock_orchestrator = MagicMock()
        mock_scheduler = MagicMock()
        mock_scheduler.running = True

        src.service._client = mock_client
        src.service._refresh_orchestrator = mock_orchestrator
        src.service._scheduler = mock_scheduler

        _shutdown_sync()

        mock_orchestrator.stop_scheduler_sync.assert_called_once()
        mock_scheduler.shutdown.assert_called_once_with(wait=False)
        mock_client.close.assert_called_once()
        assert src.service._client is None

    def test_shutdown_handles_errors_gracefully(self):
        """Test each shutdown step runs even if an earlier one fails"""
        mock_client = MagicMock()
        mock_orchestrator = MagicMock()
        mock_orchestrator.stop_scheduler_sync.side_effect = Exception("Stop failed")
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        mock_scheduler.shutdown.side_effect = Exception("Scheduler shutdown failed")

        src.service._client = mock_client
        src.service._refresh_orchestrator = mock_orchestrator
        src.service._scheduler = mock_scheduler

        try:
            _shutdown_sync()
        except Exception:
            pytest.fail("Shutdown should not raise exception on stop failures")

        mock_client.close.assert_called_once()

    def test_shutdown_with_nothing_started(self):
        try:
            _shutdown_sync()
        except Exception:
            pytest.fail("Shutdown should handle missing resources gracefully")

    def test_signal_handler_requests_clean_exit(self):
        with pytest.raises(SystemExit) as exc_info:
            _handle_signal(signal.SIGTERM, None)

        assert exc_info.value.code == 0


class TestServiceMain:
    """Test process exit codes"""

    @pytest.fixture
    def patched_environment(self, app_config):
        with patch("src.service.load_app_config", return_value=app_config):
            with patch("src.service.setup_logging"):
                with patch("src.service.signal.signal") as mock_signal:
                    with patch("src.service.threading"):
                        yield mock_signal

    def test_signal_shutdown_exits_zero(self, patched_environment):
        """Test SIGINT/SIGTERM handlers are installed and a signal exits cleanly"""
        mock_scheduler = MagicMock()
        mock_scheduler.running = True
        mock_scheduler.start.side_effect = SystemExit(0)
        mock_client = MagicMock()

        def fake_startup(app_config):
            src.service._client = mock_client
            src.service._scheduler = mock_scheduler

        with patch("src.service._startup_sync", side_effect=fake_startup):
            exit_code = main()

        assert exit_code == 0
        installed = {c.args[0] for c in patched_environment.call_args_list}
        assert installed == {signal.SIGINT, signal.SIGTERM}
        mock_scheduler.shutdown.assert_called_once_with(wait=False)
        mock_client.close.assert_called_once()

    def test_startup_failure_exits_one(self, patched_environment):
        with patch(
            "src.service._startup_sync", side_effect=DatabaseQueryFailed("Login failed")
        ):
            assert main() == 1

    def test_unexpected_fault_exits_one(self, patched_environment):
        mock_scheduler = MagicMock()
        mock_scheduler.start.side_effect = RuntimeError("scheduler thread died")
        mock_client = MagicMock()

        def fake_startup(app_config):
            src.service._client = mock_client
            src.service._scheduler = mock_scheduler

        with patch("src.service._startup_sync", side_effect=fake_startup):
            assert main() == 1

        mock_client.close.assert_called_once()

    def test_configuration_error_exits_one(self):
        with patch("src.service.load_app_config", side_effect=ValueError("bad yaml")):
            assert main() == 1
