"""Feedback and config-data payloads sent to the server."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer

from ddiclient.models.status import ConfigDataMode, Execution, Finished

FEEDBACK_TIME_FORMAT = "%Y%m%dT%H%M%S"


class Progress(BaseModel):
    """Progress counter, e.g. 2 of 5 artifacts downloaded."""

    cnt: int = Field(..., ge=0)
    of: Optional[int] = Field(None, ge=0)


class FeedbackResult(BaseModel):
    finished: Finished
    progress: Optional[Progress] = None


class FeedbackStatus(BaseModel):
    execution: Execution
    result: FeedbackResult
    details: list[str] = Field(default_factory=list)


class FeedbackPayload(BaseModel):
    """POST .../deploymentBase/<id>/feedback or .../cancelAction/<id>/feedback.

    Example:
        {
            "id": "42",
            "time": "20261018T101500",
            "status": {
                "execution": "closed",
                "result": {"finished": "success"},
                "details": ["Installed 1 artifact"]
            }
        }
    """

    id: str
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: FeedbackStatus

    @field_serializer("time")
    def serialize_time(self, value: datetime) -> str:
        return value.astimezone(timezone.utc).strftime(FEEDBACK_TIME_FORMAT)

    @classmethod
    def build(
        cls,
        action_id: str,
        execution: Execution,
        finished: Finished,
        details: Optional[list[str]] = None,
        progress: Optional[Progress] = None,
    ) -> "FeedbackPayload":
        return cls(
            id=action_id,
            status=FeedbackStatus(
                execution=execution,
                result=FeedbackResult(finished=finished, progress=progress),
                details=list(details or []),
            ),
        )

    def to_wire(self) -> dict[str, Any]:
        """JSON body with ``progress`` omitted when unset."""
        body = self.model_dump(mode="json")
        if body["status"]["result"].get("progress") is None:
            body["status"]["result"].pop("progress", None)
        return body


class ConfigDataPayload(BaseModel):
    """PUT .../configData body."""

    mode: Optional[ConfigDataMode] = None
    data: dict[str, Any] = Field(default_factory=dict)
    status: FeedbackStatus = Field(
        default_factory=lambda: FeedbackStatus(
            execution=Execution.CLOSED,
            result=FeedbackResult(finished=Finished.SUCCESS),
        )
    )

    def to_wire(self) -> dict[str, Any]:
        body = self.model_dump(mode="json")
        body["status"]["result"].pop("progress", None)
        return body
