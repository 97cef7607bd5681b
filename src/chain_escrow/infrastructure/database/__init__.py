"""Database infrastructure — engine, ORM models, and repositories."""

from chain_escrow.infrastructure.database.engine import (
    close_db,
    create_tables,
    get_async_session,
    get_session_factory,
    init_db,
    make_session_factory,
)
from chain_escrow.infrastructure.database.orm_models import (
    Base,
    DisputeReplica,
    EscrowReplica,
    IndexerCursor,
)
from chain_escrow.infrastructure.database.repositories import (
    CursorRepository,
    DisputeReplicaRepository,
    EscrowReplicaRepository,
)

__all__ = [
    "Base",
    "DisputeReplica",
    "EscrowReplica",
    "IndexerCursor",
    "CursorRepository",
    "DisputeReplicaRepository",
    "EscrowReplicaRepository",
    "close_db",
    "create_tables",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "make_session_factory",
]
