"""Unit tests for DeployService."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ddiclient.errors import ExternalStepError
from ddiclient.models.deployment import DownloadedArtifact
from ddiclient.services.deploy import DeployService
from ddiclient.services.process import ServiceStatus


@pytest.mark.unit
class TestDeployService:
    """Test DeployService in isolation."""

    @pytest.fixture
    def mock_process_manager(self):
        manager = MagicMock()
        manager.restart_service = AsyncMock()
        manager.get_service_status = AsyncMock(return_value=ServiceStatus.ACTIVE)
        return manager

    @pytest.fixture
    def make_artifacts(self, config):
        def _make(files: dict[str, bytes]) -> list[DownloadedArtifact]:
            chunk_dir = config.download_dir / "action-42" / "app"
            chunk_dir.mkdir(parents=True, exist_ok=True)
            artifacts = []
            for name, content in files.items():
                path = chunk_dir / name
                path.write_bytes(content)
                artifacts.append(DownloadedArtifact(
                    part="bApp",
                    chunk_name="app",
                    chunk_version="1.0.0",
                    filename=name,
                    path=path,
                    size=len(content),
                ))
            return artifacts

        return _make

    @pytest.mark.asyncio
    async def test_install_copies_artifacts(self, config, make_artifacts, mock_process_manager):
        # Arrange
        service = DeployService(config, process_manager=mock_process_manager)
        artifacts = make_artifacts({"app.bin": b"binary", "app.cfg": b"key=value"})

        # Act
        result = await service.install("42", artifacts, asyncio.Event())

        # Assert
        assert result.success is True
        assert (config.install_dir / "app" / "app.bin").read_bytes() == b"binary"
        assert (config.install_dir / "app" / "app.cfg").read_bytes() == b"key=value"
        assert not list((config.install_dir / "app").glob("*.tmp"))
        mock_process_manager.restart_service.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_file_is_backed_up(self, config, make_artifacts, mock_process_manager):
        # Arrange
        target = config.install_dir / "app" / "app.bin"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"old version")
        service = DeployService(config, process_manager=mock_process_manager)

        # Act
        await service.install("42", make_artifacts({"app.bin": b"new version"}), asyncio.Event())

        # Assert
        assert target.read_bytes() == b"new version"
        backups = list(config.backup_dir.glob("app.bin.42.*.bak"))
        assert len(backups) == 1
        assert backups[0].read_bytes() == b"old version"

    @pytest.mark.asyncio
    async def test_restarts_configured_service(self, make_config, make_artifacts, mock_process_manager):
        config = make_config(restart_service="device-app")
        service = DeployService(config, process_manager=mock_process_manager)

        result = await service.install("42", make_artifacts({"app.bin": b"x"}), asyncio.Event())

        assert result.success is True
        mock_process_manager.restart_service.assert_awaited_once_with("device-app")

    @pytest.mark.asyncio
    async def test_failed_restart_rolls_back(self, make_config, make_artifacts, mock_process_manager):
        # Arrange
        config = make_config(restart_service="device-app")
        target = config.install_dir / "app" / "app.bin"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"old version")
        mock_process_manager.get_service_status.return_value = ServiceStatus.FAILED
        service = DeployService(config, process_manager=mock_process_manager)

        # Act & Assert
        with pytest.raises(ExternalStepError, match="DEPLOYMENT_FAILED"):
            await service.install("42", make_artifacts({"app.bin": b"new version"}), asyncio.Event())

        assert target.read_bytes() == b"old version"

    @pytest.mark.asyncio
    async def test_copy_failure_removes_new_files(self, config, make_artifacts, mock_process_manager):
        # Arrange
        artifacts = make_artifacts({"a.bin": b"a", "b.bin": b"b"})
        artifacts[1].path.unlink()
        service = DeployService(config, process_manager=mock_process_manager)

        # Act & Assert
        with pytest.raises(ExternalStepError):
            await service.install("42", artifacts, asyncio.Event())

        assert not (config.install_dir / "app" / "a.bin").exists()

    @pytest.mark.asyncio
    async def test_abort_stops_before_next_file(self, config, make_artifacts, mock_process_manager):
        # Arrange
        artifacts = make_artifacts({"a.bin": b"a", "b.bin": b"b"})
        abort = asyncio.Event()
        service = DeployService(config, process_manager=mock_process_manager)
        original = service._deploy_file

        async def deploy_then_abort(*args, **kwargs):
            backup = await original(*args, **kwargs)
            abort.set()
            return backup

        # Act
        with patch.object(service, "_deploy_file", side_effect=deploy_then_abort):
            result = await service.install("42", artifacts, abort)

        # Assert
        assert result.success is False
        assert result.details == ["Installation aborted"]
        assert not (config.install_dir / "app" / "a.bin").exists()
        assert not (config.install_dir / "app" / "b.bin").exists()

    @pytest.mark.asyncio
    async def test_task_cancel_mid_install_restores_replaced_files(
        self, config, make_artifacts, mock_process_manager
    ):
        # Arrange
        target = config.install_dir / "app" / "a.bin"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"OLD-A")
        artifacts = make_artifacts({"a.bin": b"NEW-A", "b.bin": b"NEW-B"})
        abort = asyncio.Event()
        service = DeployService(config, process_manager=mock_process_manager)
        original = service._deploy_file
        second_copy_started = asyncio.Event()

        async def block_on_second(src_path, dst_path, action_id):
            if src_path.name == "b.bin":
                second_copy_started.set()
                await asyncio.Event().wait()
            return await original(src_path, dst_path, action_id)

        # Act
        with patch.object(service, "_deploy_file", side_effect=block_on_second):
            task = asyncio.create_task(service.install("42", artifacts, abort))
            await asyncio.wait_for(second_copy_started.wait(), timeout=2)
            abort.set()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        # Assert
        assert target.read_bytes() == b"OLD-A"
        assert not (config.install_dir / "app" / "b.bin").exists()
