"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the replica query service, the notifier, the indexer and its ledger sources,
and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request

from chain_escrow.config import Settings, get_settings
from chain_escrow.infrastructure.database.engine import get_async_session
from chain_escrow.services.query_service import ReplicaQueryService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession

    from chain_escrow.indexer.notifier import Notifier
    from chain_escrow.indexer.reconciler import EventIndexer
    from chain_escrow.indexer.sources import LedgerSource


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


async def get_query_service(
    session: AsyncSession = Depends(get_db_session),
) -> ReplicaQueryService:
    """Provide a ReplicaQueryService bound to the current session."""
    return ReplicaQueryService(session)


def get_notifier(request: Request) -> Notifier:
    """Provide the notifier the indexer publishes through (set up in lifespan)."""
    return request.app.state.notifier


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_indexer(request: Request) -> EventIndexer:
    """Provide the event indexer (set up in lifespan)."""
    return request.app.state.indexer


def get_ledger_sources(request: Request) -> dict[int, LedgerSource]:
    """Provide the configured ledger sources keyed by chain id."""
    return request.app.state.sources
