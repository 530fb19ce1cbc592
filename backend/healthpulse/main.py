"""Main FastAPI application with role switching (api, scheduler, worker, all)."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db, close_db
from .routers import monitors_router, status_router
from .services.dispatcher import Dispatcher
from .services.notifier import alert_notifier
from .services.prober import ProberService
from .services.registry import monitor_registry
from .services.scheduler import FanoutScheduler, SchedulerService
from .services.task_queue import create_task_queue

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MODES = ("all", "api", "scheduler", "worker")


def check_mode(mode: str, queue_backend: str):
    """Reject role and queue combinations that cannot deliver tasks."""
    if mode not in MODES:
        raise ValueError(f"Unknown mode '{mode}', expected one of {', '.join(MODES)}")
    # An in-process queue is only read by workers in the same process
    if queue_backend == "memory" and mode not in ("all", "worker"):
        raise ValueError(
            f"Queue backend 'memory' needs workers in the same process; "
            f"mode '{mode}' runs none. Use QUEUE_BACKEND=database or MODE=all"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    check_mode(settings.mode, settings.queue_backend)

    logger.info(f"Starting HealthPulse in {settings.mode.upper()} mode")

    await init_db()
    logger.info("Database initialized")

    queue = create_task_queue()
    fanout = FanoutScheduler(monitor_registry, queue)
    app.state.fanout = fanout

    scheduler_service = None
    dispatcher = None
    probe_client = None

    if settings.mode in ("all", "scheduler"):
        scheduler_service = SchedulerService(fanout)
        scheduler_service.start()

    if settings.mode in ("all", "worker"):
        probe_client = ProberService.create_client()
        dispatcher = Dispatcher(
            queue,
            prober=ProberService(probe_client),
            notifier=alert_notifier,
        )
        dispatcher.start()

    yield

    # Shutdown
    if scheduler_service:
        scheduler_service.stop()
    if dispatcher:
        await dispatcher.stop()
    if probe_client:
        await probe_client.aclose()

    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="HealthPulse",
        description="Distributed HTTP health checks with hysteresis alerting",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitors_router)
    app.include_router(status_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "mode": settings.mode,
        }

    return app


# Create the application instance
app = create_app()


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)


if __name__ == "__main__":
    run()
