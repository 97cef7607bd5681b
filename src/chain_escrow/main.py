"""FastAPI application entry point for the escrow replica service.

Lifecycle:
    1. Startup: Initialize logging, database (create tables in dev mode), Redis,
       then start one indexer polling task per configured chain source.
    2. Running: Serve the replica API at /api/v1/* while the indexer
       keeps the replica in step with the ledger.
    3. Shutdown: Stop the indexer, then close database and Redis connections.

Run with:
    uvicorn chain_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from chain_escrow.config import get_settings
from chain_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from chain_escrow.indexer.notifier import Notifier


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from chain_escrow.infrastructure.database.engine import close_db, get_session_factory, init_db

    await init_db()

    # 3. Initialize Redis (notification sink)
    from chain_escrow.indexer.notifier import InMemoryNotifier, RedisNotifier
    from chain_escrow.infrastructure.redis_client import close_redis, init_redis

    notifier: Notifier
    try:
        redis = await init_redis()
        notifier = RedisNotifier(
            redis,
            channel_prefix=settings.notification_channel_prefix,
            history_size=settings.notification_history_size,
        )
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc), fallback="in_memory_notifier")
        notifier = InMemoryNotifier(settings.notification_history_size)
    app.state.notifier = notifier

    # 4. Start the indexer
    from chain_escrow.indexer.reconciler import EventIndexer
    from chain_escrow.indexer.scheduler import IndexerScheduler
    from chain_escrow.indexer.sources import Web3LedgerSource

    indexer = EventIndexer(
        get_session_factory(),
        notifier,
        start_height=settings.indexer_start_height,
        read_timeout_seconds=settings.indexer_read_timeout_seconds,
    )
    sources = [
        Web3LedgerSource(
            source.chain_id,
            source.rpc_url,
            source.contract_address,
            confirmations=source.confirmations,
        )
        for source in settings.chain_sources
    ]
    scheduler = IndexerScheduler(
        indexer, sources, poll_interval=settings.indexer_poll_interval_seconds
    )
    app.state.indexer = indexer
    app.state.sources = {source.chain_id: source for source in sources}
    app.state.scheduler = scheduler
    if settings.indexer_enabled and sources:
        scheduler.start()
    else:
        logger.info("app.indexer_disabled", enabled=settings.indexer_enabled, sources=len(sources))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await scheduler.stop()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Chain Escrow Replica",
        description="Replica of on-chain escrows, kept in sync by the event indexer.",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from chain_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from chain_escrow.api.routes.disputes import router as disputes_router
    from chain_escrow.api.routes.escrows import router as escrows_router
    from chain_escrow.api.routes.health import router as health_router
    from chain_escrow.api.routes.notifications import router as notifications_router

    app.include_router(health_router)
    app.include_router(escrows_router)
    app.include_router(disputes_router)
    app.include_router(notifications_router)

    return app


# The app instance used by Uvicorn
app = create_app()
