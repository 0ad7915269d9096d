"""Read-only snapshot of the action slot."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ddiclient.models.status import ActionStateEnum, Finished


class ActionSnapshot(BaseModel):
    """Copy of the current (or last) action's state.

    Handed to the poll scheduler and the status API; mutating it has no
    effect on the slot.
    """

    model_config = ConfigDict(frozen=True)

    action_id: Optional[str] = Field(None, description="None when no action was ever started")
    state: Optional[ActionStateEnum] = None
    result: Finished = Finished.NONE
    artifacts_done: int = Field(default=0, ge=0)
    artifacts_total: int = Field(default=0, ge=0)
    bytes_downloaded: int = Field(default=0, ge=0)
    message: str = "Idle"
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state is not None and not self.state.is_terminal


class InstallResult(BaseModel):
    """Verdict of the install step."""

    success: bool
    details: list[str] = Field(default_factory=list)
