"""
Application entry point with database pool and service lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from inbox_scheduler.config import settings
from inbox_scheduler.container import build_container
from inbox_scheduler.db.pool import db_pool
from inbox_scheduler.infrastructure.observability.logging import get_logger, log_request, setup_logging
from inbox_scheduler.routes import health, inbox

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    app.state.container = build_container(settings)
    logger.info("All services initialized successfully")

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    await app.state.container.close()

    # Close database pool last (may have active connections)
    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Inbox Scheduler",
    description="Email-based scheduling assistant",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(inbox.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(request.method, request.url.path, response.status_code, round(process_time, 2))
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
