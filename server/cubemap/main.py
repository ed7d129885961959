"""Cube Map server: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, upstream, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from cubemap.api.location import router as location_router
from cubemap.api.monitoring import router as monitoring_router
from cubemap.config import AppConfig, load_config
from cubemap.core.gateway import LocationCacheGateway
from cubemap.upstream.http_source import HttpLocationSource

log = structlog.get_logger()

APP_NAME = "External Cube Map"
VERSION = "1.0.0"

# Module-level singletons (set during startup)
_gateway: LocationCacheGateway | None = None
_config: AppConfig | None = None

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def get_gateway() -> LocationCacheGateway:
    assert _gateway is not None, "Server not initialized"
    return _gateway


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _gateway, _config

    _config = load_config()
    setup_logging(_config)

    log.info("server_starting",
             env=_config.server.env,
             upstream=_config.upstream.base_url,
             cache_duration=_config.cache.duration_seconds)

    async with httpx.AsyncClient() as client:
        source = HttpLocationSource(
            client,
            base_url=_config.upstream.base_url,
            location_path=_config.upstream.location_path,
            read_timeout=_config.upstream.read_timeout,
        )
        _gateway = LocationCacheGateway(source, cache_duration=_config.cache.duration_seconds)

        log.info("server_started",
                 host=_config.server.host,
                 port=_config.server.port)

        yield

    log.info("server_stopped")


app = FastAPI(
    title="Cube Map",
    description="Cached live location of the cube",
    version=VERSION,
    lifespan=lifespan,
)


@app.middleware("http")
async def api_cors(request: Request, call_next):
    """Permissive CORS on /api/*, including preflight."""
    if not request.url.path.startswith("/api/"):
        return await call_next(request)
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=_CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(_CORS_HEADERS)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        body = {"error": "Not found", "path": request.url.path}
    else:
        body = {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(Exception)
async def internal_error(request: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled_exception", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        },
    )


app.include_router(location_router)
app.include_router(monitoring_router)
