"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from flowhub import __version__
from flowhub.app.api.v1 import events_router, instances_router, system_router
from flowhub.app.config import get_settings
from flowhub.app.dependencies import close_services, get_runtime, init_services
from flowhub.app.logging import setup_logging
from flowhub.app.metrics import get_metrics_response
from flowhub.app.metrics.collector import _init_metrics
from flowhub.app.middleware.logging import LoggingMiddleware
from flowhub.control import MaintenanceScheduler
from flowhub.core.errors import FlowHubError
from flowhub.core.logging_schema import LogEvent
from flowhub.infra import close_db, close_docker, get_engine, init_db

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.metrics.enabled:
        _init_metrics()

    await init_db()
    services = await init_services()

    logger.info("Starting application", extra={"event": LogEvent.APP_STARTED})

    resumed = await services.lifecycle.resume_monitoring()
    if resumed:
        logger.info(
            "Resumed monitoring for %d running instances",
            len(resumed),
            extra={"event": LogEvent.MONITORING_STARTED, "instance_ids": resumed},
        )

    scheduler_task: asyncio.Task | None = None
    if settings.scheduler.enabled:
        scheduler = MaintenanceScheduler(services.lifecycle)
        scheduler_task = asyncio.create_task(scheduler.run(), name="maintenance")

    yield

    logger.info("Shutting down application", extra={"event": LogEvent.APP_STOPPED})
    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass

    await close_services()
    await close_docker()
    await close_db()


app = FastAPI(title="FlowHub", version=__version__, lifespan=lifespan)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(FlowHubError)
async def flowhub_error_handler(request: Request, exc: FlowHubError) -> JSONResponse:
    """Handle FlowHubError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


app.include_router(instances_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")
app.include_router(events_router, prefix="/api/v1")


async def _check_service(check_fn: callable) -> str:
    """Check service health and return status string."""
    try:
        await check_fn()
        return "connected"
    except RuntimeError:
        return "not initialized"
    except Exception as e:
        return f"error: {e}"


async def _check_database() -> None:
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))


async def _check_runtime() -> None:
    runtime = get_runtime()
    timeout = get_settings().lifecycle.ping_timeout
    if not await asyncio.wait_for(runtime.ping(), timeout):
        raise ConnectionError("ping failed")


@app.get("/health")
async def health():
    results = await asyncio.gather(
        _check_service(_check_database),
        _check_service(_check_runtime),
    )

    services = {
        "database": results[0],
        "runtime": results[1],
    }

    is_degraded = any(s != "connected" for s in services.values())

    return {
        "status": "degraded" if is_degraded else "ok",
        "version": __version__,
        "services": services,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    server = get_settings().server
    uvicorn.run(
        "flowhub.app.main:app",
        host=server.host,
        port=server.port,
        log_config=None,
    )
