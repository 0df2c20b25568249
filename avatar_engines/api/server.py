"""FastAPI application for the avatar asset service."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from avatar_engines.api.routes import router as avatar_router
from avatar_engines.api.stores import ServiceContainer
from avatar_engines.common.error_envelope import build_error_envelope, envelope_from_exception
from avatar_engines.common.errors import AvatarEngineError
from avatar_engines.common.health import router as health_router
from avatar_engines.config import runtime_config

logger = logging.getLogger(__name__)

# --- Error Handling ---

async def _avatar_error_handler(request: Request, exc: AvatarEngineError):
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    envelope = envelope_from_exception(exc)
    return JSONResponse(content=envelope.model_dump(), status_code=exc.http_status)


async def _http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        return JSONResponse(content=detail, status_code=exc.status_code)
    envelope = build_error_envelope(
        code="http.exception",
        message=str(detail) if detail else "HTTP exception",
    )
    return JSONResponse(content=envelope.model_dump(), status_code=exc.status_code)


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    envelope = build_error_envelope(
        code="validation.error",
        message="Validation failed",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=jsonable_encoder(envelope.model_dump()), status_code=400)


async def _generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    envelope = build_error_envelope(
        code="internal.error",
        message="Download failed",
        details={"reason": str(exc)},
    )
    return JSONResponse(content=envelope.model_dump(), status_code=500)


def register_error_handlers(target_app: FastAPI) -> None:
    target_app.add_exception_handler(AvatarEngineError, _avatar_error_handler)
    target_app.add_exception_handler(HTTPException, _http_exception_handler)
    target_app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    target_app.add_exception_handler(Exception, _generic_exception_handler)

# --- App Factory ---

def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or runtime_config.get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.container.aclose()

    app = FastAPI(title="Avatar Engines", version="0.1.0", lifespan=lifespan)
    app.state.container = container or ServiceContainer()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(avatar_router)
    return app
