import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from cms_infra.core.db import register_db
from cms_infra.core.redis import init_redis, close_redis
from cms_infra.core.logging_config import setup_logging
from cms_infra.api.v1.admin import router as admin_router
from cms_infra.consumers.outbox_dispatcher import OutboxDispatcher
from cms_infra.core.config import (
    DB_URL,
    LOG_LEVEL,
    OUTBOX_DISPATCHER_ENABLED,
    OUTBOX_POLL_MS,
    PROJECT_NAME,
    REDIS_URL,
    VERSION,
)
from cms_infra.core.exception_handlers import setup_exception_handlers

setup_logging(LOG_LEVEL)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    async with register_db(app, DB_URL): # Connect to DB and generate schemas
        await init_redis(REDIS_URL) # Optional; the rate limiter falls back to local counters

        dispatcher = OutboxDispatcher(interval_ms=OUTBOX_POLL_MS)
        app.state.dispatcher = dispatcher
        if OUTBOX_DISPATCHER_ENABLED:
            dispatcher.start()

        try:
            yield
        finally:
            # Let the in-flight tick mark its claimed events before the DB goes away
            await dispatcher.stop()
            await close_redis()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

app.include_router(admin_router, prefix="/api/v1/admin", tags=["Admin"])

setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
