from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from communityhub.api.error_handling import register_exception_handlers
from communityhub.api.routes import router
from communityhub.config import Settings, get_settings
from communityhub.logging import get_logger, set_correlation_id
from communityhub.service.runtime import Runtime, build_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

_MAX_REQUEST_ID_LENGTH = 128


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup unless one was injected, and close what we built."""
    owned = app.state.runtime is None
    if owned:
        app.state.runtime = await build_runtime(app.state.settings)
    logger.info("app_started", owned_runtime=owned, app_env=app.state.settings.app_env.value)

    yield

    if owned:
        await app.state.runtime.close()
        app.state.runtime = None
    logger.info("app_stopped")


def create_app(runtime: Optional[Runtime] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (runtime.settings if runtime else get_settings())
    app = FastAPI(title="Community Hub API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        # Auth responses carry tokens
        response.headers.setdefault("Cache-Control", "no-store")
        response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
        if request.url.scheme == "https" and settings.is_production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
            )
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag logs and the response with the client's X-Request-ID or a fresh UUID."""
        client_request_id = request.headers.get("X-Request-ID")
        if client_request_id and len(client_request_id) > _MAX_REQUEST_ID_LENGTH:
            client_request_id = None
        correlation_id = set_correlation_id(client_request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/healthz", tags=["health"])
    async def healthz():
        return {"success": True, "status": "ok", "version": __version__}

    return app


app = create_app()
