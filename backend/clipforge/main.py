"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipforge.config import settings
from clipforge.db.database import async_session_maker, close_db, init_db
from clipforge.api.routes import router
from clipforge.services.container import build_services
from clipforge.services.pipeline_service import PipelineService
from clipforge.stages.registry import register_all
from clipforge.workers.job_runner import StageRuntime
from clipforge.workers.queue import StageQueue
from clipforge.workers.reconcile import Reconciler

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_runtime(session_maker=async_session_maker, store=None) -> StageRuntime:
    """Queue, services and runtime with every stage registered."""
    queue = StageQueue(
        session_maker,
        max_attempts=settings.job_attempts,
        backoff_base_ms=settings.backoff_base_ms,
        backoff_max_ms=settings.backoff_max_ms,
    )
    services = build_services(settings, session_maker, store=store)
    runtime = StageRuntime(queue, services, poll_interval=settings.poll_interval_seconds)
    register_all(runtime, settings)
    return runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting ClipForge...")

    await init_db()
    logger.info("Database initialized")

    runtime = build_runtime()
    reconciler = Reconciler(runtime.queue, runtime.chainer, grace_seconds=settings.reconcile_grace_seconds)
    app.state.runtime = runtime
    app.state.pipeline_service = PipelineService(runtime.queue, notify=runtime.wake)

    if settings.run_workers:
        await runtime.start()
        reconciler.start(settings.reconcile_interval_seconds)
    else:
        logger.info("Stage workers disabled for this process")

    yield

    # Shutdown
    logger.info("Shutting down ClipForge...")
    await reconciler.stop()
    await runtime.shutdown()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Long-form video to short clips pipeline",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clipforge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
