"""In-memory slot holding the one deployment action the device works on."""

import asyncio
from datetime import datetime, timezone
from typing import Optional
import logging

from ddiclient.models.state import ActionSnapshot
from ddiclient.models.status import ActionStateEnum, Finished


class StateManager:
    """Owner of the single action slot.

    Only the deployment state machine mutates it; everybody else reads
    ``get_snapshot()``. State is not persisted: after a restart the server
    hands the action out again on the next poll.
    """

    def __init__(self):
        self.logger = logging.getLogger("ddiclient.state_manager")
        self.lock = asyncio.Lock()
        self._snapshot = ActionSnapshot()
        self._terminal = asyncio.Event()

    def get_snapshot(self) -> ActionSnapshot:
        return self._snapshot

    def begin(self, action_id: str) -> ActionSnapshot:
        """Put a new action into the slot in ``pending`` state."""
        now = datetime.now(timezone.utc)
        self._snapshot = ActionSnapshot(
            action_id=action_id,
            state=ActionStateEnum.PENDING,
            message=f"Action {action_id} pending",
            started_at=now,
            updated_at=now,
        )
        self._terminal.clear()
        self.logger.info(f"Action {action_id} entered slot (pending)")
        return self._snapshot

    def update_status(
        self,
        state: ActionStateEnum,
        message: str,
        result: Finished = Finished.NONE,
        error: Optional[str] = None,
    ) -> ActionSnapshot:
        """Record a state transition of the current action.

        Args:
            state: New action state
            message: Human-readable description
            result: Result code (set for closed actions)
            error: Error description when the action failed
        """
        previous = self._snapshot.state
        self._snapshot = self._snapshot.model_copy(
            update={
                "state": state,
                "message": message,
                "result": result,
                "error": error,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self.logger.info(
            f"Action {self._snapshot.action_id}: "
            f"{previous.value if previous else None} -> {state.value} ({message})"
        )
        if state.is_terminal:
            self._terminal.set()
        return self._snapshot

    def update_progress(
        self,
        artifacts_done: Optional[int] = None,
        artifacts_total: Optional[int] = None,
        bytes_downloaded: Optional[int] = None,
    ) -> None:
        """Update download counters without changing state."""
        update = {
            name: value
            for name, value in (
                ("artifacts_done", artifacts_done),
                ("artifacts_total", artifacts_total),
                ("bytes_downloaded", bytes_downloaded),
            )
            if value is not None
        }
        self._snapshot = self._snapshot.model_copy(update=update)

    async def wait_for_terminal(self) -> None:
        """Return once the current action has reached a terminal state."""
        await self._terminal.wait()

    def reset(self) -> None:
        """Empty the slot (used on shutdown and in tests)."""
        self._snapshot = ActionSnapshot()
        self._terminal.clear()
        self.logger.info("Action slot reset to idle")
