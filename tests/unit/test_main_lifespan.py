"""Unit tests for main.py lifespan startup and shutdown."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from ddiclient.errors import ConfigurationError
from ddiclient.main import app


@pytest.fixture
def mock_ddi_client():
    client = MagicMock()
    client.run = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.mark.unit
class TestLifespan:
    """Test the FastAPI lifespan wiring."""

    def test_startup_and_shutdown(self, config, mock_ddi_client):
        # Arrange
        with patch("ddiclient.main.ClientConfig.from_env", return_value=config), \
             patch("ddiclient.main.setup_logger", return_value=MagicMock()) as mock_log, \
             patch("ddiclient.main.DDIClient", return_value=mock_ddi_client) as mock_cls:
            # Act
            with TestClient(app) as client:
                response = client.get("/")
                assert app.state.client is mock_ddi_client

        # Assert
        assert response.status_code == 200
        mock_cls.assert_called_once_with(config)
        mock_log.assert_called_once()
        mock_ddi_client.run.assert_awaited_once()
        shutdown = mock_ddi_client.run.await_args.args[0]
        assert shutdown.is_set()
        mock_ddi_client.aclose.assert_awaited_once()
        assert config.download_dir.exists()
        assert config.install_dir.exists()
        assert config.backup_dir.exists()

    def test_invalid_configuration_aborts_startup(self):
        with patch(
            "ddiclient.main.ClientConfig.from_env",
            side_effect=ConfigurationError("Exactly one of target_token or gateway_token is required"),
        ):
            with pytest.raises(ConfigurationError):
                with TestClient(app):
                    pass
