"""Wires transport, services, state machine and poll loop together."""

import asyncio
from typing import Optional
import logging

import httpx

from ddiclient.config import ClientConfig
from ddiclient.models.state import ActionSnapshot
from ddiclient.services.config_data import ConfigDataService
from ddiclient.services.deploy import DeployService
from ddiclient.services.deployment import DeploymentStateMachine, Installer
from ddiclient.services.download import DownloadService
from ddiclient.services.reporter import FeedbackReporter
from ddiclient.services.scheduler import PollScheduler
from ddiclient.services.state_manager import StateManager
from ddiclient.services.transport import DDITransport


class DDIClient:
    """Device-side DDI client.

    Example:
        client = DDIClient(ClientConfig.from_env())
        shutdown = asyncio.Event()
        await client.run(shutdown)
    """

    def __init__(
        self,
        config: ClientConfig,
        installer: Optional[Installer] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Build the client.

        Args:
            config: Validated client configuration
            installer: Install step (DeployService if None)
            http_transport: Optional httpx transport (mock servers in tests)
        """
        self.logger = logging.getLogger("ddiclient.client")
        self.config = config
        self.transport = DDITransport(config, transport=http_transport)
        self.state_manager = StateManager()
        self.downloader = DownloadService(self.transport, config)
        self.reporter = FeedbackReporter(self.transport, config)
        self.config_data = ConfigDataService(self.transport, config)
        self.installer = installer or DeployService(config)
        self.state_machine = DeploymentStateMachine(
            self.transport,
            self.downloader,
            self.reporter,
            self.installer,
            config,
            state_manager=self.state_manager,
        )
        self.scheduler = PollScheduler(
            self.transport, self.state_machine, self.config_data, config
        )

    def snapshot(self) -> ActionSnapshot:
        return self.state_machine.snapshot()

    async def run(self, shutdown: asyncio.Event, grace: float = 5.0) -> None:
        """Run the poll loop until ``shutdown`` is set, then wind down."""
        try:
            await self.scheduler.run(shutdown)
        finally:
            await self.state_machine.shutdown(grace)

    async def aclose(self) -> None:
        await self.transport.aclose()
