"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path

import pytest

# Add src (and this directory, for the mock server) to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from ddiclient.config import ClientConfig  # noqa: E402
from mocks.ddi_server import BASE_URL, CONTROLLER_ID, TENANT, TOKEN, MockDDIServer  # noqa: E402


@pytest.fixture
def make_config(tmp_path):
    """Factory for a ClientConfig pointing at the mock server, without retry delays."""

    def _make(**overrides) -> ClientConfig:
        values = {
            "server_url": BASE_URL,
            "tenant": TENANT,
            "controller_id": CONTROLLER_ID,
            "target_token": TOKEN,
            "download_retry_base_delay": 0,
            "feedback_retry_base_delay": 0,
            "poll_retry_base_delay": 0,
            "download_dir": tmp_path / "downloads",
            "install_dir": tmp_path / "install",
            "backup_dir": tmp_path / "backups",
            "log_file": None,
        }
        values.update(overrides)
        return ClientConfig(**values)

    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def ddi_server():
    """Fresh in-process mock DDI server."""
    return MockDDIServer()
