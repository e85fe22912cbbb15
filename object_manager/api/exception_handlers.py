# object_manager/api/exception_handlers.py
"""Exception handlers answering with the HTTP status carried by finder errors."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from object_manager.exceptions import HttpStatusError, WrongFilterValueError

logger = logging.getLogger(__name__)


async def http_status_exception_handler(request: Request, exc: HttpStatusError) -> JSONResponse:
    """Convert an HttpStatusError into a JSON error response"""
    status_code = exc.get_status_code()
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s answered %d: %s", request.method, request.url.path, status_code, exc)

    content = {"detail": str(exc)}
    if isinstance(exc, WrongFilterValueError):
        content["field"] = exc.field

    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Registers the finder error handlers on the FastAPI application.

    Args:
        app (FastAPI): The FastAPI application instance.
    """
    app.add_exception_handler(HttpStatusError, http_status_exception_handler)
