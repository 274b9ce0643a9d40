import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import settings
from .db import dispose_engine
from .exceptions import RolloutServiceError
from .logging_config import setup_logging, setup_middleware
from .rate_limiting import setup_rate_limiting
from .routers import (
    drift_router,
    health_check_router,
    health_router,
    node_router,
    rollout_router,
    template_router,
)
from .services.tick_scheduler import DriftWorker, SchedulePromoter, TickScheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle manager.

    Starts the tick scheduler and the periodic workers, and re-enqueues every
    running rollout so progress resumes from persisted state after a restart.
    """
    app.logger.info(f"'{settings.PROJECT_NAME}' startup sequence initiated.")
    app.startup_time = time.time()

    workers = []
    if settings.BACKGROUND_WORKERS_ENABLED:
        tick_scheduler = TickScheduler()
        app.state.tick_scheduler = tick_scheduler
        workers = [SchedulePromoter(tick_scheduler), DriftWorker()]
        for worker in workers:
            worker.start()
        try:
            await tick_scheduler.enqueue_running()
        except Exception as e:
            app.logger.error(f"Could not re-enqueue running rollouts: {e}", exc_info=True)
    else:
        app.logger.info("Background workers disabled by configuration.")

    # Yield control back to the application
    yield

    # --- Application Shutdown ---
    app.logger.info(f"'{settings.PROJECT_NAME}' shutdown sequence initiated.")
    for worker in workers:
        await worker.stop()
    tick_scheduler = getattr(app.state, "tick_scheduler", None)
    if tick_scheduler is not None:
        await tick_scheduler.stop()
        app.state.tick_scheduler = None
    await dispose_engine()


# Configure logging before app initialization
setup_logging()

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Control plane for batched, health-gated bundle rollouts and drift detection.",
    version="1.0.0",
    root_path=settings.ROOT_PATH,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Rollouts",
            "description": "Rollout creation, lifecycle actions, approvals and progress",
        },
        {
            "name": "Drift",
            "description": "Expected vs. active bundle drift events",
        },
        {
            "name": "Nodes",
            "description": "Node registration, heartbeats and bundle reports",
        },
        {
            "name": "Health Checks",
            "description": "Custom HTTP probes evaluated by rollout health gates",
        },
        {
            "name": "Rollout Templates",
            "description": "Reusable rollout parameters",
        },
    ],
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Add a logger attribute to the app for easy access in routes if needed
app.logger = logging.getLogger("fleet_rollout_service")

# Setup middleware - MUST be done before application starts
setup_middleware(app)

# Setup rate limiting
setup_rate_limiting(app)


# Exception handlers
@app.exception_handler(RolloutServiceError)
async def rollout_service_exception_handler(request: Request, exc: RolloutServiceError):
    app.logger.info(
        f"{request.method} {request.url.path} rejected: {exc.reason}"
        + (f" ({exc.detail})" if exc.detail else "")
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.reason, "info": exc.detail},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError):
    # ctx may hold the raw exception object, which is not JSON serialisable
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


# --- Include API routers ---
app.include_router(rollout_router)
app.include_router(drift_router)
app.include_router(node_router)
app.include_router(health_check_router)
app.include_router(template_router)
app.include_router(health_router)
