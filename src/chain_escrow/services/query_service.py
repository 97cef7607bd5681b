"""Replica Query Service — read-only projections over the replica.

Both the REST routes and the simulation script read through this service.
Nothing here writes; the indexer is the replica's only writer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from chain_escrow.domain.exceptions import ReplicaNotFoundError
from chain_escrow.infrastructure.database.repositories import (
    DisputeReplicaRepository,
    EscrowReplicaRepository,
)
from chain_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from chain_escrow.domain.enums import DisputeStatus, EscrowStatus
    from chain_escrow.infrastructure.database.orm_models import DisputeReplica, EscrowReplica

logger = get_logger(__name__)


class ReplicaQueryService:
    """Filters, lookups and aggregate statistics over replicated escrows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._escrow_repo = EscrowReplicaRepository(session)
        self._dispute_repo = DisputeReplicaRepository(session)

    # ------------------------------------------------------------------
    # Escrows
    # ------------------------------------------------------------------

    async def list_escrows(
        self,
        *,
        chain_id: int | None = None,
        client: str | None = None,
        provider: str | None = None,
        status: EscrowStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EscrowReplica]:
        return await self._escrow_repo.search(
            chain_id=chain_id,
            client=client,
            provider=provider,
            status=status,
            limit=limit,
            offset=offset,
        )

    async def get_escrow(self, escrow_uuid: uuid.UUID) -> EscrowReplica:
        """Fetch by replica id or raise ReplicaNotFoundError."""
        escrow = await self._escrow_repo.get_by_id(escrow_uuid)
        if escrow is None:
            raise ReplicaNotFoundError("escrow", str(escrow_uuid))
        return escrow

    async def get_by_chain_and_id(self, chain_id: int, escrow_id: int) -> EscrowReplica:
        """Fetch by the on-chain identity or raise ReplicaNotFoundError."""
        escrow = await self._escrow_repo.get_by_chain_and_id(chain_id, escrow_id)
        if escrow is None:
            raise ReplicaNotFoundError("escrow", f"{chain_id}:{escrow_id}")
        return escrow

    async def get_by_participant(self, address: str) -> list[EscrowReplica]:
        return await self._escrow_repo.get_by_participant(address)

    async def get_statistics(self, address: str | None = None) -> dict[str, Any]:
        """``{total, by_status, total_volume}``, optionally for one participant."""
        stats = await self._escrow_repo.statistics(address)
        logger.debug("query.statistics", address=address, total=stats["total"])
        return stats

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def list_disputes(
        self,
        *,
        status: DisputeStatus | None = None,
        escrow_uuid: uuid.UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DisputeReplica]:
        return await self._dispute_repo.search(
            status=status, escrow_uuid=escrow_uuid, limit=limit, offset=offset
        )

    async def get_dispute(self, dispute_id: uuid.UUID) -> DisputeReplica:
        dispute = await self._dispute_repo.get_by_id(dispute_id)
        if dispute is None:
            raise ReplicaNotFoundError("dispute", str(dispute_id))
        return dispute
