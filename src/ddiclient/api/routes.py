"""API route handlers for the local status endpoints."""

from fastapi import APIRouter, Request

from ddiclient.api.models import ProgressResponse
from ddiclient.models.status import Finished

router = APIRouter(prefix="/api/v1.0")


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(request: Request):
    """GET /api/v1.0/progress - Query the current deployment action.

    Response format (failed action):
        {
            "code": 500,
            "msg": "Action failed: HASH_MISMATCH: ...",
            "data": {"action_id": "42", "state": "closed", "result": "failure", ...}
        }
    """
    snapshot = request.app.state.client.snapshot()

    if snapshot.result == Finished.FAILURE:
        msg = f"Action failed: {snapshot.error}" if snapshot.error else "Action failed"
        return ProgressResponse(code=500, msg=msg, data=snapshot)
    return ProgressResponse(code=200, msg="success", data=snapshot)
