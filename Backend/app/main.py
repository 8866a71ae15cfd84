# app/main.py
"""
CapyCode Backend - realtime relay, auth gate, and webhook producers.
"""
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

# Rate limiting
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import AccessError
from app.core.logging import log, log_section
from app.lib.identity import SupabaseAuthResolver
from app.lib.monitoring import register_monitoring
from app.lib.records import SupabaseRecords
from app.lib.websocket import ConnectionRegistry
from app.realtime import LivenessMonitor, RelayServer


# ---------------------------------------------------------------------------
# LIFESPAN
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    log_section("APP", "CapyCode backend starting")
    app.state.monitor.start()
    log("APP", f"WebSocket relay listening on {app.state.settings.realtime.path}")

    yield

    log("APP", "Shutting down...")
    await app.state.monitor.stop()
    for client in (app.state.resolver, app.state.records):
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()


# ---------------------------------------------------------------------------
# APP FACTORY
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    resolver=None,
    records=None,
) -> FastAPI:
    """
    Build the application. `resolver` and `records` default to the Supabase
    clients; tests pass fakes with the same async methods.
    """
    settings = settings or default_settings

    app = FastAPI(
        title="CapyCode Backend",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Monitoring
    metrics = register_monitoring(app)

    # Realtime relay
    if resolver is None:
        resolver = SupabaseAuthResolver(
            settings.supabase.url,
            settings.supabase.service_role_key,
            timeout=settings.supabase.auth_timeout,
        )
    if records is None:
        records = SupabaseRecords(settings.supabase.url, settings.supabase.service_role_key)

    registry = ConnectionRegistry()
    relay = RelayServer(registry, resolver, metrics=metrics)
    app.state.resolver = resolver
    app.state.records = records
    app.state.registry = registry
    app.state.relay = relay
    app.state.metrics = metrics
    app.state.monitor = LivenessMonitor(relay, interval=settings.realtime.heartbeat_interval)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate Limiting - HTTP only, the relay socket is not limited
    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    _register_error_handlers(app, settings)

    # Routes
    from app.api import health, realtime, webhooks

    app.include_router(health.router)
    app.include_router(realtime.router)
    app.include_router(webhooks.router)
    app.add_api_websocket_route(settings.realtime.path, realtime.realtime_endpoint)

    return app


def _register_error_handlers(app: FastAPI, settings: Settings) -> None:

    @app.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "message": exc.message},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Not Found"})
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        log("APP", f"Server error on {request.method} {request.url.path}: {exc}")
        content = {"error": "Internal Server Error"}
        if settings.debug:
            content["message"] = str(exc)
        return JSONResponse(status_code=500, content=content)


app = create_app()


# ---------------------------------------------------------------------------
# RUN
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=default_settings.port,
        reload=True,
        reload_dirs=["app"],
    )
