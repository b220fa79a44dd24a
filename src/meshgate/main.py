"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (control-plane pool, OIDC
provider, Redis, database). Middleware, CORS, exception handlers and
routers are all registered here.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from meshgate import __version__
from meshgate.api import api_router
from meshgate.config import settings
from meshgate.controlplane.client import ControlPlaneError
from meshgate.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    """
    logger.info(
        "meshgate.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        oidc_enabled=settings.oidc_enabled,
    )

    from meshgate.auth.oidc import close_oidc_provider, init_oidc_provider
    from meshgate.cache.redis import close_redis, init_redis
    from meshgate.controlplane.client import close_control_plane, init_control_plane

    await init_control_plane()
    init_oidc_provider()

    from meshgate.db.engine import async_session_factory
    from meshgate.services.session_service import SessionService
    try:
        async with async_session_factory() as db:
            purged = await SessionService(db).purge_expired()
        logger.info("meshgate.sessions_purged", count=purged)
    except SQLAlchemyError as e:
        logger.warning("meshgate.session_purge_failed", error=str(e))

    try:
        await init_redis()
        logger.info("meshgate.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("meshgate.redis_unavailable", error=str(e))
        # Redis is optional; the app runs without rate limiting

    yield

    logger.info("meshgate.shutdown")
    await close_redis()
    await close_oidc_provider()
    await close_control_plane()

    from meshgate.db.engine import engine
    await engine.dispose()


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP statuses."""

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(AuthenticationError)
    async def _authentication(request: Request, exc: AuthenticationError):
        return JSONResponse(
            status_code=401,
            content={"detail": str(exc)},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthorizationError)
    async def _authorization(request: Request, exc: AuthorizationError):
        return JSONResponse(status_code=403, content={"detail": "Forbidden"})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ControlPlaneError)
    async def _control_plane(request: Request, exc: ControlPlaneError):
        logger.error(
            "controlplane.request_failed",
            path=request.url.path,
            status=exc.status_code,
            error=str(exc),
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Control plane request failed"},
        )


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="meshgate",
        description="Identity and access layer for a mesh-VPN control plane",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from meshgate.middleware.rate_limit import RateLimitMiddleware
    from meshgate.middleware.request_id import RequestIdMiddleware
    from meshgate.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: meshgate.main:app)
app = create_app()
