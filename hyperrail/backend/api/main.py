"""
api/main.py

FastAPI application factory.

Error mapping:
  InvalidFilterOperator → 400
  MalformedRecord       → 502
  SourceUnavailable     → 503
  Cancelled             → 504
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..connections.errors import (
    Cancelled,
    ConnectionsError,
    InvalidFilterOperator,
    MalformedRecord,
    SourceUnavailable,
)
from ..connections.repository import LinkedConnectionsRepository
from ..metrics import METRICS
from .routes import connections as connections_router
from .serializers import HealthResponse

logger = logging.getLogger(__name__)

_repository: LinkedConnectionsRepository | None = None

_ERROR_STATUS: dict[type[ConnectionsError], int] = {
    InvalidFilterOperator: 400,
    MalformedRecord:       502,
    SourceUnavailable:     503,
    Cancelled:             504,
}


def set_repository(repo: LinkedConnectionsRepository) -> None:
    global _repository
    _repository = repo


def get_repository() -> LinkedConnectionsRepository:
    if _repository is None:
        raise RuntimeError("Repository not initialised — call set_repository() first")
    return _repository


async def _connections_error_handler(request: Request, exc: ConnectionsError) -> JSONResponse:
    status = _ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")

    app = FastAPI(
        title="Hyperrail — Linked Connections",
        version="1.0.0",
        description="Real-time linked connections stitched from 600-second upstream pages",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=["ETag", "Expires", "Last-Modified", "Cache-Control"],
    )

    app.add_exception_handler(ConnectionsError, _connections_error_handler)

    app.include_router(connections_router.router, prefix="/api")

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", metrics=METRICS.as_dict())

    return app
