"""Process management for systemd service control."""

import asyncio
from enum import Enum
import logging


class ServiceStatus(str, Enum):
    """Result of ``systemctl is-active``."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"
    ACTIVATING = "activating"
    UNKNOWN = "unknown"


class ProcessManager:
    """Restarts the service that consumes installed artifacts."""

    def __init__(self):
        self.logger = logging.getLogger("ddiclient.process")

    async def restart_service(self, service_name: str) -> None:
        """Restart a systemd service.

        Args:
            service_name: Systemd service name (e.g., "device-app")

        Raises:
            RuntimeError: If restart command fails
        """
        self.logger.info(f"Restarting service: {service_name}")

        process = await asyncio.create_subprocess_exec(
            "systemctl",
            "restart",
            service_name,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()

        if process.returncode != 0:
            raise RuntimeError(
                f"Failed to restart {service_name}: "
                f"exit code {process.returncode}, "
                f"stderr: {stderr.decode(errors='replace').strip()}"
            )

        self.logger.info(f"Service {service_name} restarted successfully")

    async def get_service_status(self, service_name: str) -> ServiceStatus:
        """Query ``systemctl is-active``; any failure maps to UNKNOWN."""
        try:
            process = await asyncio.create_subprocess_exec(
                "systemctl",
                "is-active",
                service_name,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await process.communicate()
        except OSError as e:
            self.logger.error(f"Failed to query status of {service_name}: {e}")
            return ServiceStatus.UNKNOWN

        value = stdout.decode(errors="replace").strip()
        try:
            return ServiceStatus(value)
        except ValueError:
            return ServiceStatus.UNKNOWN
