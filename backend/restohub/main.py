from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from restohub.api.routes import (
    admin,
    audit,
    health,
    ownership_transfers,
    payment_requests,
    refunds,
    staff,
    subscriptions,
    tiers,
    trials,
)
from restohub.core.config import settings
from restohub.core.errors import DomainError
from restohub.core.logging_setup import logger
from restohub.db.session import init_db
from restohub.services.cache import RedisCache


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    init_db()
    application.state.cache = RedisCache.from_settings()
    logger.info("[lifespan] cache available=%s", application.state.cache.is_available())

    yield

    application.state.cache.close()


def _normalize_origin(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # ===============================================================
    # CORS
    # ===============================================================
    public_front_base = settings.resolved_public_app_url()
    raw_origins = settings.allowed_origins + ([public_front_base] if public_front_base else [])

    origins: list[str] = []
    for item in raw_origins:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)

    logger.info("CORS origins: %s", origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ===============================================================
    # ERRORS
    # ===============================================================
    @application.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("[%s %s] %s", request.method, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, **exc.extra})

    # ===============================================================
    # ROUTES
    # ===============================================================
    application.include_router(health.router, prefix="/health")
    application.include_router(subscriptions.router, prefix=settings.api_v1_str)
    application.include_router(payment_requests.router, prefix=settings.api_v1_str)
    application.include_router(admin.router, prefix=settings.api_v1_str)
    application.include_router(ownership_transfers.router, prefix=settings.api_v1_str)
    application.include_router(refunds.router, prefix=settings.api_v1_str)
    application.include_router(tiers.router, prefix=settings.api_v1_str)
    application.include_router(staff.router, prefix=settings.api_v1_str)
    application.include_router(trials.router, prefix=settings.api_v1_str)
    application.include_router(audit.router, prefix=settings.api_v1_str)

    @application.get("/")
    def root():
        return {"service": settings.project_name}

    logger.info("RestoHub entitlements API initialised")
    return application


app = create_app()
