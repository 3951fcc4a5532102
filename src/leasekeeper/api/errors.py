"""HTTP error handling for the status server.

The server has no error payload format. Requests to unknown paths, and
requests with a method other than GET on a known path, get a plain 404.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

NOT_FOUND_BODY = "404 page not found\n"


async def not_found_exception_handler(request: Request, exc: Exception) -> Response:
    """Collapse 404 and 405 into a plain-text 404."""
    if isinstance(exc, StarletteHTTPException) and exc.status_code in (404, 405):
        return PlainTextResponse(NOT_FOUND_BODY, status_code=404)
    return await http_exception_handler(request, exc)  # type: ignore[arg-type]
