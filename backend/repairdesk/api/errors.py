"""Exception handlers: auth errors become 4xx JSON bodies, anything else a generic 500."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from repairdesk.core.errors import AuthError, ConfigurationError, InsufficientPermissions, ValidationFailed
from repairdesk.services.audit import audit_trail

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, code: str | None = None) -> JSONResponse:
    content = {"success": False, "error": message}
    if code:
        content["code"] = code
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        logger.warning(
            "Auth error %s on %s %s: %s", exc.code, request.method, request.url.path, exc.message
        )
        if isinstance(exc, InsufficientPermissions):
            principal = getattr(request.state, "principal", None)
            audit_trail.record(
                "access_denied",
                user_id=principal.id if principal else None,
                resource="route",
                details={"path": request.url.path, "method": request.method},
                ip_address=request.client.host if request.client else None,
            )
        return error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        # Malformed JSON or wrongly typed fields get the same 400 envelope as missing ones
        logger.warning(
            "Invalid request body on %s %s at %s", request.method, request.url.path, [e.get("loc") for e in exc.errors()]
        )
        error = ValidationFailed("Invalid request body")
        return error_response(error.status_code, error.message, error.code)

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc)
        return error_response(500, "Server configuration error")

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return error_response(500, "Internal server error")
