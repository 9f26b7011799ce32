"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, database engine).

Collaborators are built once here from the frozen Settings and parked on
app.state (token signer, password hasher, session factory); dependencies
and middleware read them from there. Tests build their own app with
their own Settings and session factory.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from nutriclinic import __version__
from nutriclinic.api import api_router
from nutriclinic.auth.errors import AuthError
from nutriclinic.auth.jwt import TokenSigner
from nutriclinic.auth.password import PasswordHasher
from nutriclinic.config import Settings, settings as default_settings
from nutriclinic.db.engine import build_engine, build_session_factory
from nutriclinic.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(
        "nutriclinic.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        await init_redis(settings.redis_url)
        logger.info("nutriclinic.redis_connected", url=settings.redis_url)
    except (RedisError, OSError) as e:
        # Redis only backs rate limiting; run without it
        logger.warning("nutriclinic.redis_unavailable", error=str(e))

    yield

    logger.info("nutriclinic.shutdown")
    await close_redis()
    # Only the engine this app built; an injected factory belongs to the caller
    if app.state.engine is not None:
        await app.state.engine.dispose()


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render domain errors as {"detail": message, "error": kind}."""
    request.state.error_message = exc.message
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind},
        headers=headers,
    )


def create_app(
    app_settings: Optional[Settings] = None,
    session_factory=None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = app_settings or default_settings

    app = FastAPI(
        title="NutriClinic API",
        description="Multi-tenant backend for nutrition clinics",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.token_signer = TokenSigner(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        access_expire_minutes=settings.access_token_expire_minutes,
    )
    app.state.password_hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    app.state.engine = None
    if session_factory is None:
        app.state.engine = build_engine(settings)
        session_factory = build_session_factory(app.state.engine)
    app.state.session_factory = session_factory

    app.add_exception_handler(AuthError, auth_error_handler)

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → AccessLog → CORS → handler

    from nutriclinic.middleware.access_log import AccessLogMiddleware
    from nutriclinic.middleware.rate_limit import RateLimitMiddleware
    from nutriclinic.middleware.request_id import RequestIdMiddleware
    from nutriclinic.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware, enabled=settings.access_log_enabled)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: nutriclinic.main:app)
app = create_app()
