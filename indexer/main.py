"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from indexer.core.config import settings
from indexer.core.crypto import get_vault
from indexer.core.middleware import setup_middleware
from indexer.core.exceptions import IndexerError
from indexer.db.session import init_db
from indexer.tasks.dispatch import DispatchQueue

from indexer.api.connections import router as connections_router
from indexer.api.jobs import router as jobs_router
from indexer.api.webhooks import router as webhooks_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("indexer")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting %s", settings.APP_NAME)
    # Refuse to start with an unusable vault key
    get_vault()
    init_db()

    dispatch = DispatchQueue()
    dispatch.start()
    app.state.dispatch = dispatch

    from indexer.services.cache_service import cache_service
    if not cache_service.health_check():
        logger.warning("Redis cache not available, price lookups will not be cached")

    yield

    dispatch.stop()
    logger.info("Shutting down %s", settings.APP_NAME)


app = FastAPI(
    title="Blockchain Indexer API",
    description="Streams on-chain events into tenant Postgres databases",
    version="0.1.0",
    lifespan=lifespan,
)

setup_middleware(app)


@app.exception_handler(IndexerError)
async def indexer_exception_handler(request: Request, exc: IndexerError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.include_router(connections_router, prefix="/api")
app.include_router(jobs_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
