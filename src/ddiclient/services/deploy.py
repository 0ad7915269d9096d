"""Default install step: deploy verified artifacts into the install directory."""

import asyncio
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

from ddiclient.config import ClientConfig
from ddiclient.errors import ExternalStepError
from ddiclient.models.deployment import DownloadedArtifact
from ddiclient.models.state import InstallResult
from ddiclient.services.process import ProcessManager, ServiceStatus


class DeployService:
    """Copies artifacts to ``<install_dir>/<chunk>/<filename>`` atomically.

    Existing files are backed up first and restored if a later step fails
    or the server cancels the action mid-install.
    """

    def __init__(
        self,
        config: ClientConfig,
        process_manager: Optional[ProcessManager] = None,
    ):
        """Initialize deployment service.

        Args:
            config: Client configuration (install/backup dirs, service name)
            process_manager: ProcessManager instance (created if None)
        """
        self.logger = logging.getLogger("ddiclient.deploy")
        self.install_dir = Path(config.install_dir)
        self.backup_dir = Path(config.backup_dir)
        self.restart_service = config.restart_service
        self.process_manager = process_manager or ProcessManager()

    async def install(
        self,
        action_id: str,
        artifacts: list[DownloadedArtifact],
        abort: asyncio.Event,
    ) -> InstallResult:
        """Deploy every artifact, then restart the configured service.

        Args:
            action_id: Action being installed (used for backup naming)
            artifacts: Verified artifacts in install order
            abort: Set when the action is canceled

        Returns:
            InstallResult; success=False when aborted

        Raises:
            ExternalStepError: If a file operation or the service restart fails
        """
        self.logger.info(f"Starting deployment for action {action_id}")
        replaced: list[tuple[Path, Optional[Path]]] = []

        try:
            for idx, artifact in enumerate(artifacts, start=1):
                if abort.is_set():
                    self.logger.warning(f"Deployment of action {action_id} aborted")
                    self._rollback(replaced)
                    return InstallResult(success=False, details=["Installation aborted"])

                self.logger.info(
                    f"Deploying artifact {idx}/{len(artifacts)}: {artifact.filename}"
                )
                dst_path = self.install_dir / artifact.path.parent.name / artifact.filename
                backup = await self._deploy_file(artifact.path, dst_path, action_id)
                replaced.append((dst_path, backup))

            if self.restart_service:
                await self.process_manager.restart_service(self.restart_service)
                status = await self.process_manager.get_service_status(self.restart_service)
                if status not in (ServiceStatus.ACTIVE, ServiceStatus.ACTIVATING):
                    raise RuntimeError(
                        f"Service {self.restart_service} is {status.value} after restart"
                    )
        except asyncio.CancelledError:
            self.logger.warning(f"Deployment of action {action_id} canceled, rolling back")
            self._rollback(replaced)
            raise
        except (OSError, RuntimeError) as e:
            self.logger.error(f"Deployment of action {action_id} failed: {e}")
            self._rollback(replaced)
            raise ExternalStepError(f"DEPLOYMENT_FAILED: {e}") from e

        self.logger.info(f"Deployment complete for action {action_id}")
        return InstallResult(
            success=True,
            details=[f"Installed {len(artifacts)} artifacts into {self.install_dir}"],
        )

    async def _deploy_file(self, src_path: Path, dst_path: Path, action_id: str) -> Optional[Path]:
        """Deploy a single file with backup and atomic rename.

        Returns:
            Backup path of the replaced file, None if there was none
        """
        dst_path.parent.mkdir(parents=True, exist_ok=True)

        backup = None
        if dst_path.exists():
            backup = self._backup_file(dst_path, action_id)

        # Copy to temporary file first (atomic operation)
        tmp_path = dst_path.parent / f"{dst_path.name}.tmp"
        try:
            await asyncio.to_thread(shutil.copyfile, src_path, tmp_path)
            tmp_path.replace(dst_path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

        self.logger.info(f"Deployed {src_path.name} to {dst_path}")
        return backup

    def _backup_file(self, file_path: Path, action_id: str) -> Path:
        """Backup existing file before replacement."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = self.backup_dir / f"{file_path.name}.{action_id}.{timestamp}.bak"

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(file_path, backup_path)

        self.logger.info(f"Backed up {file_path.name} to {backup_path}")
        return backup_path

    def _rollback(self, replaced: list[tuple[Path, Optional[Path]]]) -> None:
        """Restore backups (or remove new files) in reverse order."""
        for dst_path, backup in reversed(replaced):
            try:
                if backup is not None:
                    shutil.copy2(backup, dst_path)
                else:
                    dst_path.unlink(missing_ok=True)
                self.logger.info(f"Rolled back {dst_path}")
            except OSError as e:
                self.logger.error(f"Rollback of {dst_path} failed: {e}")
