"""Unit tests for the local status API (routes.py)."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from ddiclient.main import app
from ddiclient.models.state import ActionSnapshot
from ddiclient.models.status import ActionStateEnum, Finished


@pytest.fixture
def client_with_snapshot():
    """TestClient (without lifespan) whose DDI client returns the given snapshot."""

    def _make(snapshot: ActionSnapshot) -> TestClient:
        ddi_client = MagicMock()
        ddi_client.snapshot.return_value = snapshot
        app.state.client = ddi_client
        return TestClient(app)

    yield _make
    del app.state.client


@pytest.mark.unit
class TestProgressRoute:
    """Test GET /api/v1.0/progress."""

    def test_idle(self, client_with_snapshot):
        response = client_with_snapshot(ActionSnapshot()).get("/api/v1.0/progress")

        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 200
        assert body["msg"] == "success"
        assert body["data"]["action_id"] is None
        assert body["data"]["message"] == "Idle"

    def test_downloading(self, client_with_snapshot):
        snapshot = ActionSnapshot(
            action_id="42",
            state=ActionStateEnum.DOWNLOADING,
            artifacts_done=1,
            artifacts_total=3,
            bytes_downloaded=2048,
            message="Downloading 3 artifacts",
        )

        body = client_with_snapshot(snapshot).get("/api/v1.0/progress").json()

        assert body["code"] == 200
        assert body["data"]["state"] == "downloading"
        assert body["data"]["artifacts_done"] == 1
        assert body["data"]["bytes_downloaded"] == 2048

    def test_failed_action(self, client_with_snapshot):
        snapshot = ActionSnapshot(
            action_id="42",
            state=ActionStateEnum.CLOSED,
            result=Finished.FAILURE,
            error="HASH_MISMATCH: firmware.bin: sha256 expected aa, got bb",
        )

        response = client_with_snapshot(snapshot).get("/api/v1.0/progress")

        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 500
        assert body["msg"].startswith("Action failed: HASH_MISMATCH")
        assert body["data"]["result"] == "failure"


@pytest.mark.unit
def test_health_check():
    response = TestClient(app).get("/")

    assert response.status_code == 200
    assert response.json()["service"] == "ddiclient"
