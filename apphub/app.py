"""
FastAPI application entry point for AppHub.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from apphub.config import Settings, get_settings
from apphub.routes import router
from apphub.storage import AppStorage, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

INVALID_DATA = "Invalid data"


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )


def _register_error_handlers(app: FastAPI, settings: Settings) -> None:
    def server_error(exc: Exception) -> JSONResponse:
        message = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(status_code=500, content={"error": message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": INVALID_DATA, "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(ValidationError)
    async def storage_validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=400, content={"error": INVALID_DATA, "details": [str(exc)]}
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return server_error(exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return server_error(exc)


def create_app(
    settings: Settings | None = None, storage: AppStorage | None = None
) -> FastAPI:
    """
    Build the API. Without an explicit `storage`, requests use the adapter
    selected by BMS_DATABASE, created on first use.
    """
    settings = settings or get_settings()
    _configure_logging(settings)

    app = FastAPI(title="AppHub API", version="0.1.0")
    app.state.settings = settings
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app, settings)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
