"""Feedback reporting service for deployment and cancel actions."""

import logging
from typing import Optional

from ddiclient.config import ClientConfig
from ddiclient.errors import TransportError
from ddiclient.models.feedback import FeedbackPayload, Progress
from ddiclient.models.status import Execution, Finished
from ddiclient.services.transport import DDITransport


def feedback_url(resource_url: str) -> str:
    """Feedback endpoint of a deploymentBase or cancelAction resource.

    ``.../deploymentBase/42?c=-2129030598`` -> ``.../deploymentBase/42/feedback``
    """
    base = resource_url.split("#", 1)[0].split("?", 1)[0]
    return f"{base.rstrip('/')}/feedback"


class FeedbackReporter:
    """Sends feedback messages to the server.

    Delivery failures are retried a few times, then logged; they never raise,
    because the device has already reached the reported state locally.
    """

    def __init__(self, transport: DDITransport, config: ClientConfig):
        """Initialize feedback reporter.

        Args:
            transport: DDI transport used for POSTs
            config: Client configuration (feedback retry policy)
        """
        self.logger = logging.getLogger("ddiclient.reporter")
        self.transport = transport
        self.policy = config.feedback_policy()
        # action id -> summaries of feedback that never reached the server
        self._undelivered: dict[str, list[str]] = {}

    async def send_feedback(
        self,
        url: str,
        action_id: str,
        execution: Execution,
        finished: Finished,
        details: Optional[list[str]] = None,
        progress: Optional[Progress] = None,
    ) -> bool:
        """Submit one feedback message.

        Args:
            url: Feedback endpoint (see ``feedback_url``)
            action_id: Action the feedback refers to
            execution: Execution status
            finished: Result code
            details: Human-readable detail lines
            progress: Optional progress counter

        Returns:
            True if the server accepted the feedback, False otherwise
        """
        lines = list(details or [])
        pending = self._undelivered.get(action_id, [])
        if pending:
            lines.extend(f"Undelivered earlier feedback: {line}" for line in pending)

        payload = FeedbackPayload.build(action_id, execution, finished, lines, progress)
        body = payload.to_wire()

        self.logger.debug(
            f"Sending feedback: action={action_id}, execution={execution.value}, "
            f"finished={finished.value}"
        )

        try:
            await self.policy.run(
                lambda: self.transport.post_json(url, body),
                retry_on=(TransportError,),
                description=f"Feedback for action {action_id}",
                logger=self.logger,
            )
        except TransportError as e:
            self.logger.error(
                f"Failed to deliver feedback for action {action_id} "
                f"({execution.value}/{finished.value}): {e}. Continuing..."
            )
            summary = f"{execution.value}/{finished.value} at {body['time']}"
            self._undelivered.setdefault(action_id, []).append(summary)
            return False

        self._undelivered.pop(action_id, None)
        self.logger.info(
            f"Feedback sent: action={action_id}, execution={execution.value}, "
            f"finished={finished.value}"
        )
        return True

    def undelivered(self, action_id: str) -> list[str]:
        """Summaries of feedback for the action that could not be delivered."""
        return list(self._undelivered.get(action_id, []))
