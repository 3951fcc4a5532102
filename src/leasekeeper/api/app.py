"""FastAPI application factory for the status server.

The app is a thin read path over a LeaderState: it never talks to the
lease store. The leadership consumer and the shutdown orchestrator are the
only writers of that state.
"""

from __future__ import annotations

from typing import cast

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ExceptionHandler

from leasekeeper import __version__
from leasekeeper.api.errors import not_found_exception_handler
from leasekeeper.api.routers import status
from leasekeeper.api.state import LeaderState


def create_app(state: LeaderState | None = None) -> FastAPI:
    """Create the status application.

    Args:
        state: Shared leader state; a fresh one is created if omitted
    """
    app = FastAPI(
        title="leasekeeper",
        description="Leader election sidecar status API",
        version=__version__,
        default_response_class=ORJSONResponse,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.leader_state = state or LeaderState()

    app.add_exception_handler(
        StarletteHTTPException, cast(ExceptionHandler, not_found_exception_handler)
    )
    app.include_router(status.router)

    return app
