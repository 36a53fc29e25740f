"""FastAPI application factory."""

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from tabletop_scribe.api.media import router as media_router
from tabletop_scribe.api.processing import router as processing_router
from tabletop_scribe.api.referrals import router as referrals_router
from tabletop_scribe.api.stripe_webhook import router as stripe_webhook_router
from tabletop_scribe.api.uploads import router as uploads_router
from tabletop_scribe.app_logging import configure_logging
from tabletop_scribe.config import MAX_REQUEST_BYTES, MAX_UPLOAD_BYTES, MIB
from tabletop_scribe.containers import AppContainer
from tabletop_scribe.errors import ApiError, ErrorCode

SERVER_SIDE_UPLOAD_PATH = "/api/upload-server-side"


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Upload limits: %dMB per file, %dMB per request",
            MAX_UPLOAD_BYTES // MIB,
            MAX_REQUEST_BYTES // MIB,
        )
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.middleware("http")
    async def limit_request_size(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            size = int(content_length)
            limit = request_size_limit(request.url.path)
            if size > limit:
                logger.error(
                    "Request too large: %.2fMB exceeds %dMB limit",
                    size / MIB,
                    limit // MIB,
                )
                return JSONResponse(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    content={
                        "message": (
                            f"Request too large: {size / MIB:.2f}MB exceeds "
                            f"{limit // MIB}MB limit"
                        ),
                        "error": ErrorCode.REQUEST_TOO_LARGE,
                    },
                )
        return await call_next(request)

    @app.middleware("http")
    async def log_api_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "%s %s %s in %dms",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "message": _describe_validation_errors(exc),
                "error": ErrorCode.VALIDATION_ERROR,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.critical(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "message": "Internal Server Error",
                "error": ErrorCode.INTERNAL_ERROR,
            },
        )

    app.include_router(uploads_router)
    app.include_router(media_router)
    app.include_router(processing_router)
    app.include_router(referrals_router)
    app.include_router(stripe_webhook_router)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(tz=UTC).isoformat()}

    return app


def request_size_limit(path: str) -> int:
    """Return the largest accepted request body for a path."""
    if path == SERVER_SIDE_UPLOAD_PATH:
        return MAX_UPLOAD_BYTES
    return MAX_REQUEST_BYTES


def _describe_validation_errors(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(
            str(part) for part in error.get("loc", ()) if part not in {"body", "form"}
        )
        message = error.get("msg", "Invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "Invalid request"
