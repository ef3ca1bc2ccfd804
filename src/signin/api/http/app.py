"""FastAPI application factory and setup."""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from src.signin.api.http.app_data import ApplicationDependencies
from src.signin.api.http.routers.auth_flow import router as auth_flow_router
from src.signin.api.utils.app_startup import configure_logging
from src.signin.core.services import (
    DbSessionService,
    JWKSCacheInMemory,
    JwksService,
    JwtVerificationService,
    OidcClientService,
    SessionManager,
    StateTokenManager,
)
from src.signin.core.storage.session_storage import get_session_storage
from src.signin.runtime.context import get_config

# Initialize logging
configure_logging()


# --- Security middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        # HSTS only in prod
        if get_config().app.environment == "production":
            response.headers.setdefault(
                "Strict-Transport-Security",
                "max-age=31536000; includeSubDomains; preload",
            )
        return response


# --- FastAPI app setup ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup()
    try:
        yield
    finally:
        await shutdown()


app = FastAPI(
    title="Tenant sign-in",
    lifespan=lifespan,
    docs_url=None if get_config().app.environment == "production" else "/docs",
    redoc_url=None if get_config().app.environment == "production" else "/redoc",
)

app.add_middleware(SecurityHeadersMiddleware)

# expose lifecycle hooks for tests
__all__ = ["app", "build_dependencies", "startup", "shutdown"]

# --- CORS configuration ---
if get_config().app.environment == "production" and "*" in get_config().app.cors.origins:
    raise RuntimeError(
        "CORS misconfigured: cannot use '*' with allow_credentials=True in production"
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().app.cors.origins,
    allow_credentials=get_config().app.cors.allow_credentials,
    allow_methods=get_config().app.cors.allow_methods,
    allow_headers=get_config().app.cors.allow_headers,
)


# --- Request logging middleware ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    # Correlation / tracing
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    xff = request.headers.get("x-forwarded-for")
    client_ip = (
        xff.split(",")[0].strip()
        if xff
        else request.client.host
        if request.client
        else "unknown"
    )

    # Query strings carry codes and state; never logged
    base_ctx = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client_ip": client_ip,
        "user_agent": request.headers.get("user-agent", "unknown"),
    }

    start = time.perf_counter()

    with logger.contextualize(**base_ctx):
        try:
            logger.info("request.start")
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start) * 1000
            logger.bind(
                status_code=response.status_code,
                duration_ms=round(duration_ms, 1),
            ).info("request.end")

            response.headers.setdefault("X-Request-ID", request_id)
            return response

        except HTTPException as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.bind(
                status_code=exc.status_code,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            ).exception("request.error")
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail, "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )

        except RequestValidationError as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.bind(
                status_code=422,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            ).exception("request.validation_error")
            return JSONResponse(
                status_code=422,
                content={"detail": exc.errors(), "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )

        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.bind(
                status_code=500,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            ).exception("request.error")
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )


# --- Router registration ---
app.include_router(auth_flow_router, prefix="/auth")


# --- Lifecycle hooks ---
async def build_dependencies() -> ApplicationDependencies:
    """Wire the application-wide services for the current configuration."""
    config = get_config()

    jwks_cache = JWKSCacheInMemory(ttl_seconds=config.jwt.jwks_cache_ttl)
    jwks_service = JwksService(jwks_cache)
    jwt_verify_service = JwtVerificationService(jwks_service)
    session_storage = await get_session_storage()

    database_service = DbSessionService()
    database_service.create_all()

    return ApplicationDependencies(
        jwks_cache=jwks_cache,
        jwks_service=jwks_service,
        jwt_verify_service=jwt_verify_service,
        oidc_client_service=OidcClientService(jwt_verify_service),
        session_storage=session_storage,
        state_token_manager=StateTokenManager(session_storage),
        session_manager=SessionManager(session_storage),
        database_service=database_service,
    )


async def _prefetch_jwks(jwks_service: JwksService) -> None:
    """Fetch provider signing keys so misconfiguration surfaces at startup."""
    config = get_config()
    providers = list(config.oidc.providers.items())
    if not providers:
        logger.warning("No OIDC providers configured; sign-in is unavailable")
        return

    results = await asyncio.gather(
        *(jwks_service.fetch_jwks(provider) for _, provider in providers),
        return_exceptions=True,
    )
    errors = [
        (name, str(err))
        for (name, _), err in zip(providers, results, strict=True)
        if isinstance(err, Exception)
    ]
    for name, err in errors:
        logger.error("Failed to fetch JWKS for provider {}: {}", name, err)
    if errors and config.app.environment == "production":
        raise RuntimeError(f"JWKS readiness check failed for providers: {errors}")


async def startup() -> None:
    config = get_config()
    logger.info("Starting up application in {} environment", config.app.environment)

    deps = await build_dependencies()
    app.state.app_dependencies = deps

    if config.oidc.jwks_prefetch:
        await _prefetch_jwks(deps.jwks_service)


async def shutdown() -> None:
    logger.info("Shutting down application")
    app_dependencies: ApplicationDependencies | None = getattr(
        app.state, "app_dependencies", None
    )
    if app_dependencies is None:
        return
    await app_dependencies.state_token_manager.purge_expired()
    await app_dependencies.session_manager.purge_expired()
    app_dependencies.database_service.dispose()


# --- Route handlers ---


@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness check; does not touch dependencies."""
    return {"status": "healthy"}


@app.get("/ready", response_model=None)
async def readiness(request: Request) -> dict[str, Any] | JSONResponse:
    """Readiness check over the database and the session store."""
    app_deps: ApplicationDependencies = request.app.state.app_dependencies
    config = get_config()

    database_ok = app_deps.database_service.health_check()
    storage_ok = await app_deps.session_storage.ping()
    checks = {
        "database": {
            "status": "healthy" if database_ok else "unhealthy",
            "type": "sqlite" if config.database.is_sqlite else "postgresql",
        },
        "session_storage": {
            "status": "healthy" if storage_ok else "unhealthy",
            "type": type(app_deps.session_storage).__name__,
        },
    }
    body = {"status": "ready" if database_ok and storage_ok else "not_ready", "checks": checks}
    if not (database_ok and storage_ok):
        return JSONResponse(status_code=503, content=body)
    return body


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=get_config().app.host,
        port=get_config().app.port,
        access_log=False,  # We handle access logging in middleware
    )
