"""Pydantic models for the local status API."""

from pydantic import BaseModel, Field

from ddiclient.models.state import ActionSnapshot


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response.

    HTTP status code is always 200, real status in 'code' field.

    Example:
        {
            "code": 200,
            "msg": "success",
            "data": {
                "action_id": "42",
                "state": "downloading",
                "result": "none",
                "artifacts_done": 1,
                "artifacts_total": 3,
                ...
            }
        }
    """

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ActionSnapshot = Field(..., description="Current or last action")
