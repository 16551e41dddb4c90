"""
Exception Handlers for FastAPI Application.

Access-control denials map to 403 and agent execution errors to 400. Any
other unhandled exception is logged with an error ID and returned as 500.
"""

import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from flowsmith_ai.access_control.errors import AccessDeniedError
from flowsmith_ai.core.logging_config import get_logger
from flowsmith_ai.executor.errors import AgentExecutionError

logger = get_logger(__name__)


async def access_denied_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
    logger.warning(f"Access denied in {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=403,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


async def agent_execution_error_handler(request: Request, exc: AgentExecutionError) -> JSONResponse:
    logger.warning(f"Agent execution failed in {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler to log detailed error information.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with error details and error ID
    """
    error_id = id(exc)

    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(AccessDeniedError, access_denied_handler)
    app.add_exception_handler(AgentExecutionError, agent_execution_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
