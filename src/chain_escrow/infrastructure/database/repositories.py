"""Repository classes for replica access.

Repositories encapsulate all SQL queries and provide a clean interface
to the indexer and query service. They accept an AsyncSession and never
manage their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select

from chain_escrow.domain.enums import DisputeStatus, EscrowStatus
from chain_escrow.infrastructure.database.orm_models import (
    DisputeReplica,
    EscrowReplica,
    IndexerCursor,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession


class EscrowReplicaRepository:
    """Data access for replicated escrow records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: EscrowReplica) -> EscrowReplica:
        """Insert a new replica row."""
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def save(self, escrow: EscrowReplica) -> EscrowReplica:
        """Flush pending changes on an existing row."""
        escrow.updated_at = datetime.now(UTC)
        await self._session.flush()
        return escrow

    async def get_by_id(self, escrow_uuid: uuid.UUID) -> EscrowReplica | None:
        result = await self._session.execute(
            select(EscrowReplica).where(EscrowReplica.id == escrow_uuid)
        )
        return result.scalar_one_or_none()

    async def get_by_chain_and_id(self, chain_id: int, escrow_id: int) -> EscrowReplica | None:
        """Fetch by the natural key (chain_id, escrow_id)."""
        result = await self._session.execute(
            select(EscrowReplica).where(
                EscrowReplica.chain_id == chain_id,
                EscrowReplica.escrow_id == escrow_id,
            )
        )
        return result.scalar_one_or_none()

    async def search(
        self,
        *,
        chain_id: int | None = None,
        client: str | None = None,
        provider: str | None = None,
        status: EscrowStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EscrowReplica]:
        """Filtered listing, newest first."""
        stmt = select(EscrowReplica)
        if chain_id is not None:
            stmt = stmt.where(EscrowReplica.chain_id == chain_id)
        if client:
            stmt = stmt.where(EscrowReplica.client == client.lower())
        if provider:
            stmt = stmt.where(EscrowReplica.provider == provider.lower())
        if status is not None:
            stmt = stmt.where(EscrowReplica.status == int(status))
        stmt = (
            stmt.order_by(EscrowReplica.created_at.desc(), EscrowReplica.escrow_id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_participant(self, address: str) -> list[EscrowReplica]:
        """All escrows where ``address`` is client or provider."""
        address = address.lower()
        result = await self._session.execute(
            select(EscrowReplica)
            .where(or_(EscrowReplica.client == address, EscrowReplica.provider == address))
            .order_by(EscrowReplica.created_at.desc(), EscrowReplica.escrow_id.desc())
        )
        return list(result.scalars().all())

    async def statistics(self, address: str | None = None) -> dict[str, Any]:
        """Count by status plus summed amount.

        Amounts are uint256 decimal strings, so the sum happens here rather
        than in SQL.
        """
        where = []
        if address:
            address = address.lower()
            where.append(or_(EscrowReplica.client == address, EscrowReplica.provider == address))

        counts = await self._session.execute(
            select(EscrowReplica.status, func.count()).where(*where).group_by(EscrowReplica.status)
        )
        by_status = Counter({EscrowStatus(status).name: count for status, count in counts.all()})

        amounts = await self._session.execute(select(EscrowReplica.amount).where(*where))
        total_volume = sum(int(amount) for amount in amounts.scalars().all())

        return {
            "total": sum(by_status.values()),
            "by_status": {status.name: by_status.get(status.name, 0) for status in EscrowStatus},
            "total_volume": total_volume,
        }


class DisputeReplicaRepository:
    """Data access for replicated disputes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: DisputeReplica) -> DisputeReplica:
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(self, dispute_id: uuid.UUID) -> DisputeReplica | None:
        result = await self._session.execute(
            select(DisputeReplica).where(DisputeReplica.id == dispute_id)
        )
        return result.scalar_one_or_none()

    async def get_by_opening(self, escrow_uuid: uuid.UUID, tx_hash: str) -> DisputeReplica | None:
        """The dispute opened by ``tx_hash``, if already recorded."""
        result = await self._session.execute(
            select(DisputeReplica).where(
                DisputeReplica.escrow_uuid == escrow_uuid,
                DisputeReplica.opened_tx_hash == tx_hash,
            )
        )
        return result.scalar_one_or_none()

    async def get_open_for_escrow(self, escrow_uuid: uuid.UUID) -> DisputeReplica | None:
        result = await self._session.execute(
            select(DisputeReplica)
            .where(
                DisputeReplica.escrow_uuid == escrow_uuid,
                DisputeReplica.status == DisputeStatus.OPEN.value,
            )
            .order_by(DisputeReplica.opened_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def search(
        self,
        *,
        status: DisputeStatus | None = None,
        escrow_uuid: uuid.UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DisputeReplica]:
        stmt = select(DisputeReplica)
        if status is not None:
            stmt = stmt.where(DisputeReplica.status == status.value)
        if escrow_uuid is not None:
            stmt = stmt.where(DisputeReplica.escrow_uuid == escrow_uuid)
        stmt = stmt.order_by(DisputeReplica.opened_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def resolve(
        self,
        dispute: DisputeReplica,
        *,
        resolver: str,
        in_favor_of_client: bool,
        tx_hash: str,
        resolved_at: datetime,
    ) -> DisputeReplica:
        """Close an open dispute with the arbitrator's decision."""
        dispute.status = DisputeStatus.RESOLVED.value
        dispute.resolver = resolver.lower()
        dispute.in_favor_of_client = in_favor_of_client
        dispute.resolved_tx_hash = tx_hash
        dispute.resolved_at = resolved_at
        await self._session.flush()
        return dispute


class CursorRepository:
    """Data access for per-chain indexer cursors."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, chain_id: int) -> IndexerCursor | None:
        result = await self._session.execute(
            select(IndexerCursor).where(IndexerCursor.chain_id == chain_id)
        )
        return result.scalar_one_or_none()

    async def get_height(self, chain_id: int, default: int = -1) -> int:
        """Last fully processed height, or ``default`` if the chain is new."""
        cursor = await self.get(chain_id)
        return default if cursor is None else cursor.last_height

    async def advance(self, chain_id: int, height: int) -> IndexerCursor:
        """Move the cursor to ``height``. Never moves it backwards."""
        cursor = await self.get(chain_id)
        if cursor is None:
            cursor = IndexerCursor(chain_id=chain_id, last_height=height)
            self._session.add(cursor)
        elif height > cursor.last_height:
            cursor.last_height = height
            cursor.updated_at = datetime.now(UTC)
        await self._session.flush()
        return cursor
