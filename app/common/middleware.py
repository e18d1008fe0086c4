"""
Middleware and exception handlers for the billing API
"""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID
import logging

from app.common.exceptions import BillingError, UnexpectedError

logger = logging.getLogger(__name__)

PRINCIPAL_HEADER = "X-User-ID"


class PrincipalMiddleware(BaseHTTPMiddleware):
    """
    Middleware that extracts the already-authenticated principal id from the
    X-User-ID header and sets it on request.state.user_id.

    The header is optional; when present it must be a valid UUID.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.user_id = None

        # Skip for OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        principal_header = request.headers.get(PRINCIPAL_HEADER)
        if principal_header:
            try:
                request.state.user_id = UUID(principal_header)
                logger.debug(f"Request to {request.url.path} by principal {request.state.user_id}")
            except ValueError:
                return Response(
                    content='{"error":"validation_failed","detail":{"message":"Invalid X-User-ID format. Must be a valid UUID","field":"X-User-ID"}}',
                    status_code=status.HTTP_400_BAD_REQUEST,
                    media_type="application/json"
                )

        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers for production
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


def register_exception_handlers(app: FastAPI) -> None:
    """Errores de dominio como JSON {"error": código, "detail": {...}}"""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.detail}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.detail}
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        error = UnexpectedError()
        return JSONResponse(
            status_code=error.status_code,
            content={"error": error.code, "detail": error.detail}
        )
