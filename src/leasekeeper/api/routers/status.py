"""Status endpoints.

- /healthz, /readyz - probes; "ok" while serving, 503 once shutdown began
- /api/leader       - current leader identity as JSON
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse, PlainTextResponse
from pydantic import BaseModel

from leasekeeper.api.state import LeaderState

router = APIRouter(tags=["status"])


class LeaderResponse(BaseModel):
    """Leader payload. leader is empty until an election round completes."""

    leader: str


def get_leader_state(request: Request) -> LeaderState:
    """Dependency returning the app's shared LeaderState."""
    state: LeaderState = request.app.state.leader_state
    return state


@router.get("/healthz", response_class=PlainTextResponse)
@router.get("/readyz", response_class=PlainTextResponse)
async def health(state: LeaderState = Depends(get_leader_state)) -> PlainTextResponse:
    """Liveness and readiness probe."""
    if not state.accepting:
        return PlainTextResponse("shutting down\n", status_code=503)
    return PlainTextResponse("ok\n")


@router.get("/api/leader", response_model=LeaderResponse)
async def leader(state: LeaderState = Depends(get_leader_state)) -> ORJSONResponse:
    """Return the last known leader."""
    payload = LeaderResponse(leader=state.leader)
    return ORJSONResponse(payload.model_dump())
