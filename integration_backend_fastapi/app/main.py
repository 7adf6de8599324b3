# app/main.py
from contextlib import asynccontextmanager
import asyncio
import importlib
import json
from time import perf_counter

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.utils import get_openapi
from sqlalchemy import text

from app.core.config import load_environment, get_env_load_state, settings
from app.core.middleware import LoggingMiddleware

APP_VERSION = "1.0.0"


class PrettyJSONResponse(JSONResponse):
    """Custom JSONResponse that pretty-prints JSON with indentation."""
    def render(self, content: any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=2,
            separators=(",", ": "),
        ).encode("utf-8")

load_environment()  # load .env.dev / .env.uat / .env.prod based on APP_ENV

CRITICAL_ROUTER_MODULES = (
    "app.integration.routers.integration_router",
)

DEFERRED_ROUTER_MODULES = (
    "app.integration.routers.scheduler_router",
)

ALL_ROUTER_MODULES = CRITICAL_ROUTER_MODULES + DEFERRED_ROUTER_MODULES


def _import_router(module_path: str):
    """
    Import a router module and return its `router` attribute.
    Kept sync so it can be executed inside a thread without touching the loop.
    """
    module = importlib.import_module(module_path)
    router = getattr(module, "router", None)
    if router is None:
        raise AttributeError(f"Module {module_path} does not expose a FastAPI router named 'router'")
    return router


def _load_router_with_profile(module_path: str):
    """Synchronous helper executed in a thread so we can capture timing info."""
    start = perf_counter()
    router = _import_router(module_path)
    duration_ms = (perf_counter() - start) * 1000
    return module_path, router, duration_ms


async def _load_routers(app: FastAPI, module_paths, app_logger, *, label: str):
    """Load routers concurrently while still logging individual durations."""
    tasks = [
        asyncio.to_thread(_load_router_with_profile, module_path)
        for module_path in module_paths
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    for result in results:
        if isinstance(result, Exception):
            raise result

        module_path, router, load_ms = result
        app.include_router(router)
        app_logger.debug(
            "Router loaded",
            extra={"router_module": module_path, "load_ms": round(load_ms, 2), "batch": label},
        )


async def _prewarm_database(app_logger):
    """Ping the database in a worker thread; log but do not block startup."""
    from app.db.session import get_engine

    engine = get_engine()

    def _ping():
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    try:
        await asyncio.to_thread(_ping)
    except Exception as exc:
        app_logger.warning("Database prewarm failed", extra={"error": str(exc)})


def _create_ingestion_scheduler():
    """Build the scheduler service owned by the app; it is not started here."""
    from app.db.session import SessionLocal
    from app.services.job_runner import JobRunner
    from app.services.scheduler import IngestionScheduler

    runner = JobRunner(
        SessionLocal,
        max_rows_per_run=settings.MAX_ROWS_PER_RUN,
        checkpoint_interval=settings.PROGRESS_CHECKPOINT_INTERVAL,
    )
    return IngestionScheduler(
        SessionLocal,
        runner,
        interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
        fetch_limit=settings.SCHEDULER_FETCH_LIMIT,
        max_jobs_per_tick=settings.SCHEDULER_MAX_JOBS_PER_TICK,
        max_jobs_per_tenant=settings.SCHEDULER_MAX_JOBS_PER_TENANT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Routers are loaded here (after uvicorn says "running") instead of at import time.
    Database connection is pre-warmed so first request is fast.
    The ingestion scheduler is created on app.state and, when enabled, started;
    it is stopped again on shutdown.
    """
    from app.core.logger import app_logger

    env_state = get_env_load_state()
    if env_state["warning"]:
        app_logger.warning(
            "Environment file missing",
            extra={"warning": env_state["warning"]},
        )

    startup_start = perf_counter()
    db_task = asyncio.create_task(_prewarm_database(app_logger))
    deferred_task = asyncio.create_task(
        _load_routers(app, DEFERRED_ROUTER_MODULES, app_logger, label="deferred")
    )

    await _load_routers(app, CRITICAL_ROUTER_MODULES, app_logger, label="critical")

    scheduler = _create_ingestion_scheduler()
    app.state.ingestion_scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()

    startup_duration_ms = (perf_counter() - startup_start) * 1000
    app_logger.info(
        "Integration FastAPI application started",
        extra={
            "version": APP_VERSION,
            "startup_ms": round(startup_duration_ms, 2),
            "routers_loaded": len(CRITICAL_ROUTER_MODULES),
            "routers_deferred": len(DEFERRED_ROUTER_MODULES),
            "db_prewarm_blocking": False,
            "scheduler_enabled": settings.SCHEDULER_ENABLED,
            "environment": settings.ENVIRONMENT,
            "log_level": settings.LOG_LEVEL,
            "log_format": settings.LOG_FORMAT,
        },
    )

    yield  # App is running

    scheduler.stop()
    await asyncio.gather(db_task, deferred_task)
    app_logger.info("Integration FastAPI application shutting down")


app = FastAPI(
    title="Integration FastAPI Backend",
    description=(
        "Bulk CSV/Excel integration API for maintenance data: locations, machine models, "
        "machines, maintenance ranges and operations"
    ),
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    default_response_class=PrettyJSONResponse,
    swagger_ui_parameters={"persistAuthorization": True},
)


def custom_openapi():
    """
    Add global Bearer auth header to Swagger / OpenAPI so the token
    can be provided once via the Authorize button and reused.
    """
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    components = openapi_schema.setdefault("components", {})
    security_schemes = components.setdefault("securitySchemes", {})

    # HTTP Bearer auth using Authorization: Bearer <JWT_ACCESS_TOKEN>
    security_schemes["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
        "description": "Use the access token as: `Bearer <JWT_ACCESS_TOKEN>`",
    }

    openapi_schema["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

# Parse CORS origins from config (comma-separated list or "*" for all)
cors_origins = settings.CORS_ORIGINS
if cors_origins == "*":
    allow_origins = ["*"]
else:
    allow_origins = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LoggingMiddleware)


@app.get("/")
def read_root():
    return {
        "message": "Integration FastAPI is running",
        "docs": "/docs",
        "redoc": "/redoc",
        "openapi": "/openapi.json",
    }


@app.get("/health")
async def health_check():
    """
    Lightweight health probe invoked by uptime monitors.
    Performs a quick DB ping and reports the ingestion scheduler state.
    """
    from app.db.session import get_engine

    db_status = "unknown"
    overall_status = "degraded"

    try:
        engine = get_engine()

        def _ping():
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

        await asyncio.to_thread(_ping)
        db_status = "up"
        overall_status = "ok"
    except Exception as exc:
        db_status = f"down ({type(exc).__name__})"

    scheduler = getattr(app.state, "ingestion_scheduler", None)
    return {
        "status": overall_status,
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": db_status,
        "scheduler": {
            "active": scheduler.is_active(),
            "ticking": scheduler.is_ticking(),
        } if scheduler is not None else None,
    }
