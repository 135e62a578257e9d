"""FastAPI application factory.

``create_app`` mounts the router under ``/api/v1`` and installs exception
handlers that turn KubeDoctorError subclasses into the standard error
envelope with the matching HTTP status.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kubedoctor import __version__
from kubedoctor.api.routes import router
from kubedoctor.api.schemas import ErrorResponse
from kubedoctor.errors import KubeDoctorError

_log = structlog.get_logger(component="api.app")

STATUS_BY_CODE: dict[str, int] = {
    "RESOURCE_NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "UNAUTHORIZED": 401,
    "UNAVAILABLE": 503,
    "FLUX_NOT_INSTALLED": 503,
    "MALFORMED_RESOURCE": 422,
    "INVALID_ARGUMENT": 400,
    "INTERNAL_ERROR": 500,
}


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


def create_app(coordinator: Any, registry: Any = None) -> FastAPI:
    """Create the REST application bound to ``coordinator``."""
    app = FastAPI(
        title="KubeDoctor",
        version=__version__,
        description="Kubernetes and Flux health diagnostics.",
    )
    app.state.coordinator = coordinator
    app.state.registry = registry
    app.include_router(router, prefix="/api/v1")

    @app.exception_handler(KubeDoctorError)
    async def _kubedoctor_error(request: Request, exc: KubeDoctorError) -> JSONResponse:
        status_code = STATUS_BY_CODE.get(exc.error_code, 500)
        _log.warning(
            "api_request_failed",
            path=request.url.path,
            error_code=exc.error_code,
            status=status_code,
            error=str(exc),
        )
        return _error_response(status_code, exc.error_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = "; ".join(str(err.get("msg", "")) for err in exc.errors()) or "Invalid request"
        return _error_response(400, "INVALID_ARGUMENT", detail)

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        _log.error("api_internal_error", path=request.url.path, error=str(exc))
        return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred.")

    return app
