"""
MoneyBridge - income webhook ingestion and reconciliation back office.

Builds the FastAPI app: JSON logging, correlation IDs, CORS, the uniform
{"error": ...} envelope and the optional PMS sync worker.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from moneybridge.api.health import APP_VERSION
from moneybridge.api.router import api_router
from moneybridge.config import Settings, get_settings
from moneybridge.database import dispose_engine
from moneybridge.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("moneybridge")

WORKER_SHUTDOWN_TIMEOUT = 10.0
DEV_ORIGINS = ["http://localhost:5173"]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Correlation-ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def _warn_on_weak_config(settings: Settings) -> None:
    if not settings.dashboard_jwt_secret:
        logger.warning("DASHBOARD_JWT_SECRET not set - admin tokens are verified with APP_SECRET_KEY")
    if not settings.encryption_key:
        logger.warning("ENCRYPTION_KEY not set - income source secrets are stored in plaintext")
    if not settings.pms_database_url:
        logger.info("PMS_DATABASE_URL not set - PMS bridge endpoints will answer 503")


def _init_sentry(settings: Settings) -> None:
    if not settings.sentry_dsn:
        return
    try:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.app_env,
            release=f"moneybridge@{APP_VERSION}",
            traces_sample_rate=0.1,
        )
        logger.info("Sentry initialized")
    except Exception as e:
        logger.warning("Sentry initialization failed: %s", str(e))


def _start_workers(settings: Settings) -> list[asyncio.Task]:
    if not settings.pms_sync_enabled:
        logger.info("PMS sync worker disabled (PMS_SYNC_ENABLED=false)")
        return []
    if not settings.pms_database_url:
        logger.warning("PMS_SYNC_ENABLED is set but PMS_DATABASE_URL is empty; worker not started")
        return []
    from moneybridge.workers.pms_sync import run_pms_sync_worker
    logger.info("Starting PMS sync worker")
    return [asyncio.create_task(run_pms_sync_worker(), name="pms_sync")]


async def _stop_workers(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.wait(tasks, timeout=WORKER_SHUTDOWN_TIMEOUT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("MoneyBridge starting (env=%s)", settings.app_env)
    _warn_on_weak_config(settings)
    _init_sentry(settings)

    workers = _start_workers(settings)
    yield

    logger.info("MoneyBridge stopping %d worker(s)", len(workers))
    await _stop_workers(workers)
    await dispose_engine()


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """400 naming each offending field."""
    details = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app() -> FastAPI:
    settings = get_settings()
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="MoneyBridge",
        description="Income webhook ingestion and reconciliation",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    origins = DEV_ORIGINS + [settings.app_base_url]
    origins += [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "X-Signature"],
    )
    # Outermost, so CORS preflights get an ID too
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(StarletteHTTPException, http_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(Exception, unhandled_exception_handler)

    application.include_router(api_router)
    return application


app = create_app()
