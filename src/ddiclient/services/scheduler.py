"""Poll loop: asks the server for work and dispatches it."""

import asyncio
from typing import Optional
import logging

from pydantic import ValidationError

from ddiclient.config import ClientConfig
from ddiclient.errors import ProtocolError, TransportError
from ddiclient.models.deployment import CancelActionReply
from ddiclient.models.poll import (
    CancelRequested,
    ConfigDataRequested,
    DeploymentAvailable,
    PollResponse,
    PollResult,
)
from ddiclient.services.config_data import ConfigDataService
from ddiclient.services.deployment import DeploymentStateMachine
from ddiclient.services.transport import DDITransport

# Floor for server intervals of 00:00:00 or unparsable fields
MIN_POLL_INTERVAL = 1.0


class PollScheduler:
    """Cooperative, cancellable poll loop.

    Transport and protocol failures never end the loop; they are logged and
    the next poll is attempted after a bounded exponential backoff.
    """

    def __init__(
        self,
        transport: DDITransport,
        state_machine: DeploymentStateMachine,
        config_data: ConfigDataService,
        config: ClientConfig,
    ):
        self.logger = logging.getLogger("ddiclient.scheduler")
        self.transport = transport
        self.state_machine = state_machine
        self.config_data = config_data
        self.controller_url = config.controller_url
        self.active_poll_interval = config.active_poll_interval
        self.retry_policy = config.poll_policy()
        self.consecutive_failures = 0

    async def run(self, shutdown: asyncio.Event) -> None:
        """Poll until ``shutdown`` is set."""
        self.logger.info(f"Polling {self.controller_url}")
        while not shutdown.is_set():
            result = await self.poll_once()
            if result is None:
                self.consecutive_failures += 1
                delay = self.retry_policy.delay(self.consecutive_failures)
                self.logger.info(f"Retrying poll in {delay:.1f}s")
            else:
                self.consecutive_failures = 0
                delay = self.next_delay(result)
                self.logger.debug(f"Next poll in {delay:.1f}s")
            await self._sleep(delay, shutdown)
        self.logger.info("Poll loop stopped")

    async def poll_once(self) -> Optional[PollResult]:
        """Run one poll cycle.

        Returns:
            The parsed PollResult, or None if the poll itself failed
        """
        try:
            raw = await self.transport.get_json(self.controller_url)
            result = PollResult.from_response(PollResponse.model_validate(raw))
        except TransportError as e:
            self.logger.warning(f"Poll failed: {e}")
            return None
        except (ProtocolError, ValidationError) as e:
            self.logger.error(f"Unexpected poll reply: {e}")
            return None

        for operation in result.operations():
            await self.dispatch(operation)
        return result

    async def dispatch(self, operation) -> None:
        """Route one offered operation."""
        if isinstance(operation, CancelRequested):
            await self._handle_cancel(operation)
        elif isinstance(operation, DeploymentAvailable):
            await self.state_machine.start(operation.action_id, operation.url)
        elif isinstance(operation, ConfigDataRequested):
            await self.config_data.upload(operation.url)
        else:
            raise TypeError(f"Unknown poll operation: {operation!r}")

    def next_delay(self, result: PollResult) -> float:
        """Server interval, capped while an action is in progress."""
        delay = result.next_poll_interval
        if self.state_machine.snapshot().is_active:
            delay = min(delay, self.active_poll_interval)
        return max(delay, MIN_POLL_INTERVAL)

    async def _handle_cancel(self, request: CancelRequested) -> None:
        try:
            raw = await self.transport.get_json(request.url)
            reply = CancelActionReply.model_validate(raw)
        except TransportError as e:
            self.logger.warning(f"Could not fetch cancel action {request.action_id}: {e}")
            return
        except (ProtocolError, ValidationError) as e:
            self.logger.error(f"Malformed cancel action {request.action_id}: {e}")
            return

        stop_id = reply.cancel_action.stop_id
        self.logger.info(f"Server requests cancellation of action {stop_id}")
        await self.state_machine.cancel(stop_id, request.url)

    async def _sleep(self, seconds: float, shutdown: asyncio.Event) -> None:
        """Sleep, waking early on shutdown or when the active action ends."""
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        waiters = [asyncio.ensure_future(shutdown.wait())]
        if self.state_machine.snapshot().is_active:
            waiters.append(asyncio.ensure_future(self.state_machine.wait_for_terminal()))
        try:
            await asyncio.wait(waiters, timeout=seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
