"""Event Indexer — reconciles ledger logs into the replica.

One ``sync_chain`` call is one polling cycle for one chain source:

    1. from = cursor + 1, to = confirmed height; nothing to do if from > to.
    2. Fetch the escrow logs in [from, to], ordered by (height, log_index).
    3. Apply each log in its own database transaction. Creation inserts
       (or skips a duplicate); any other transition updates status and
       realized fee from a canonical ledger read, backfilling the record
       first if the replica has never seen it. Dispute rows follow
       DisputeOpened / DisputeResolved.
    4. After commit, notify client and provider (best-effort).

The cursor moves inside the transaction of the last log at each height, and
to ``to`` once the whole window is applied. A failure stops the cycle with the
cursor at the last fully applied height, so the next cycle redoes the rest.
Every step is idempotent, which makes the redo safe.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from chain_escrow.domain.enums import (
    NOTIFICATION_FOR_EVENT,
    EscrowStatus,
    LedgerEventType,
    NotificationKind,
)
from chain_escrow.domain.exceptions import IndexerError, LedgerUnavailableError
from chain_escrow.infrastructure.database.orm_models import DisputeReplica, EscrowReplica
from chain_escrow.infrastructure.database.repositories import (
    CursorRepository,
    DisputeReplicaRepository,
    EscrowReplicaRepository,
)
from chain_escrow.logging_config import bound_context, get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from chain_escrow.domain.models import EscrowRecord, LedgerLog
    from chain_escrow.indexer.notifier import Notifier
    from chain_escrow.indexer.sources import LedgerSource

logger = get_logger(__name__)


def block_time(timestamp: int) -> datetime:
    """Ledger timestamps are unix seconds."""
    return datetime.fromtimestamp(timestamp, UTC)


@dataclass
class SyncResult:
    """Outcome of one polling cycle for one chain."""

    chain_id: int
    from_height: int
    to_height: int
    cursor: int
    applied: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Applied:
    """What a committed log owes the notifier."""

    kind: NotificationKind | None = None
    participants: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)


class EventIndexer:
    """Single writer of the replica for every chain it is handed."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        *,
        start_height: int = 0,
        read_timeout_seconds: float = 10.0,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._start_height = start_height
        self._read_timeout = read_timeout_seconds

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def cursor(self, chain_id: int) -> int:
        """Last fully processed height for ``chain_id``."""
        async with self._session_factory() as session:
            return await CursorRepository(session).get_height(chain_id, default=self._start_height - 1)

    async def sync_chain(self, source: LedgerSource) -> SyncResult:
        """Run one reconciliation cycle against ``source``."""
        chain_id = source.chain_id
        with bound_context(chain_id=chain_id):
            cursor = await self.cursor(chain_id)
            from_height = cursor + 1
            try:
                to_height = await self._read(
                    source, "get_confirmed_height", source.get_confirmed_height()
                )
            except LedgerUnavailableError as err:
                logger.warning("indexer.ledger_unavailable", operation=err.operation, error=str(err))
                return SyncResult(chain_id, from_height, from_height - 1, cursor, error=str(err))

            result = SyncResult(chain_id, from_height, to_height, cursor)
            if from_height > to_height:
                logger.debug("indexer.nothing_new", cursor=cursor, confirmed=to_height)
                return result

            try:
                logs = await self._read(source, "get_logs", source.get_logs(from_height, to_height))
            except LedgerUnavailableError as err:
                logger.warning("indexer.ledger_unavailable", operation=err.operation, error=str(err))
                result.error = str(err)
                return result

            for index, log in enumerate(logs):
                last_at_height = index + 1 == len(logs) or logs[index + 1].height != log.height
                try:
                    applied = await self._apply(
                        source, log, advance_to=log.height if last_at_height else None
                    )
                except Exception as err:
                    logger.exception(
                        "indexer.event_failed",
                        log_event=str(log.event),
                        height=log.height,
                        log_index=log.log_index,
                        escrow_id=log.escrow_id,
                    )
                    result.error = f"{type(err).__name__}: {err}"
                    return result

                result.applied += 1
                if last_at_height:
                    result.cursor = log.height
                await self._notify(applied, log)

            if result.cursor < to_height:
                async with self._session_factory() as session, session.begin():
                    await CursorRepository(session).advance(chain_id, to_height)
                result.cursor = to_height

            logger.info(
                "indexer.cycle_complete",
                from_height=from_height,
                to_height=to_height,
                applied=result.applied,
            )
            return result

    async def resync_escrow(self, source: LedgerSource, escrow_id: int) -> EscrowReplica:
        """Overwrite the replica of one escrow with a fresh canonical read."""
        chain_id = source.chain_id
        with bound_context(chain_id=chain_id, escrow_id=escrow_id):
            record = await self._read(source, "get_escrow", source.get_escrow(escrow_id))
            async with self._session_factory() as session, session.begin():
                escrows = EscrowReplicaRepository(session)
                row = await escrows.get_by_chain_and_id(chain_id, escrow_id)
                if row is None:
                    row = await escrows.create(_replica_from_record(chain_id, record, "", 0))
                else:
                    _refresh_from_record(row, record)
                    await escrows.save(row)
            logger.info("indexer.escrow_resynced", status=record.status.name)
            return row

    # ------------------------------------------------------------------
    # Per-log application
    # ------------------------------------------------------------------

    async def _apply(self, source: LedgerSource, log: LedgerLog, *, advance_to: int | None) -> _Applied:
        applied = _Applied()
        async with self._session_factory() as session, session.begin():
            if log.event.is_escrow_event:
                applied = await self._apply_escrow_event(session, source, log)
            else:
                logger.info("indexer.admin_event", log_event=str(log.event), args=log.args)
            if advance_to is not None:
                await CursorRepository(session).advance(source.chain_id, advance_to)
        return applied

    async def _apply_escrow_event(
        self,
        session: AsyncSession,
        source: LedgerSource,
        log: LedgerLog,
    ) -> _Applied:
        chain_id = source.chain_id
        escrow_id = log.escrow_id
        if escrow_id is None:
            raise IndexerError(f"{log.event} log without escrowId", code="MALFORMED_LOG")

        escrows = EscrowReplicaRepository(session)
        row = await escrows.get_by_chain_and_id(chain_id, escrow_id)

        if log.event is LedgerEventType.ESCROW_CREATED:
            if row is not None:
                logger.debug("indexer.duplicate_creation", escrow_id=escrow_id)
                return _Applied()
            record = await self._read(source, "get_escrow", source.get_escrow(escrow_id))
            row = await escrows.create(_replica_from_creation(chain_id, log, record))
            logger.info("indexer.escrow_inserted", escrow_id=escrow_id, status=record.status.name)
        else:
            record = await self._read(source, "get_escrow", source.get_escrow(escrow_id))
            if row is None:
                row = await escrows.create(
                    _replica_from_record(chain_id, record, log.tx_hash, log.height)
                )
                logger.warning(
                    "indexer.escrow_backfilled",
                    escrow_id=escrow_id,
                    log_event=str(log.event),
                    status=record.status.name,
                )
            else:
                previous = row.status
                row.status = int(record.status)
                row.fee = str(record.fee_paid)
                await escrows.save(row)
                logger.info(
                    "indexer.escrow_updated",
                    escrow_id=escrow_id,
                    log_event=str(log.event),
                    old_status=EscrowStatus(previous).name,
                    new_status=record.status.name,
                )
            await self._apply_dispute_event(session, row, log)

        return _Applied(
            kind=NOTIFICATION_FOR_EVENT[log.event],
            participants=tuple(dict.fromkeys((row.client, row.provider))),
            details={
                "chain_id": chain_id,
                "event": str(log.event),
                "status": EscrowStatus(row.status).name,
                "tx_hash": log.tx_hash,
                "height": log.height,
            },
        )

    async def _apply_dispute_event(self, session: AsyncSession, row: EscrowReplica, log: LedgerLog) -> None:
        disputes = DisputeReplicaRepository(session)
        if log.event is LedgerEventType.DISPUTE_OPENED:
            if await disputes.get_by_opening(row.id, log.tx_hash) is not None:
                return
            opened = log.args.get("timestamp") or log.timestamp
            await disputes.create(
                DisputeReplica(
                    escrow_uuid=row.id,
                    opener=str(log.args.get("opener", "")).lower(),
                    opened_tx_hash=log.tx_hash,
                    opened_at=block_time(int(opened)),
                )
            )
        elif log.event is LedgerEventType.DISPUTE_RESOLVED:
            dispute = await disputes.get_open_for_escrow(row.id)
            if dispute is None:
                # Already resolved on an earlier pass, or opened before the start height.
                logger.debug("indexer.no_open_dispute", escrow_id=row.escrow_id)
                return
            await disputes.resolve(
                dispute,
                resolver=str(log.args.get("arbitrator", "")),
                in_favor_of_client=bool(log.args.get("inFavorOfClient")),
                tx_hash=log.tx_hash,
                resolved_at=block_time(log.timestamp),
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _notify(self, applied: _Applied, log: LedgerLog) -> None:
        if applied.kind is None:
            return
        for participant in applied.participants:
            try:
                await self._notifier.notify(participant, applied.kind, log.escrow_id, applied.details)
            except Exception as err:
                logger.warning(
                    "notifier.delivery_failed",
                    participant=participant,
                    kind=str(applied.kind),
                    escrow_id=log.escrow_id,
                    error=str(err),
                )

    async def _read(self, source: LedgerSource, operation: str, awaitable: Awaitable[Any]) -> Any:
        """Await a ledger read with a bounded timeout."""
        try:
            async with asyncio.timeout(self._read_timeout):
                return await awaitable
        except TimeoutError as err:
            raise LedgerUnavailableError(source.chain_id, operation, "read timed out") from err


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------
def _replica_from_record(chain_id: int, record: EscrowRecord, tx_hash: str, height: int) -> EscrowReplica:
    return EscrowReplica(
        chain_id=chain_id,
        escrow_id=record.escrow_id,
        client=record.client,
        provider=record.provider,
        arbitrator=record.arbitrator,
        asset=record.asset.address,
        amount=str(record.amount),
        fee_rate=record.fee_rate,
        fee=str(record.fee_paid),
        status=int(record.status),
        deadline=block_time(record.deadline) if record.deadline else None,
        description=record.description,
        source_tx_hash=tx_hash,
        source_height=height,
        created_at=block_time(record.created_at),
    )


def _replica_from_creation(chain_id: int, log: LedgerLog, record: EscrowRecord) -> EscrowReplica:
    """Event payload first; the canonical read fills the rest."""
    row = _replica_from_record(chain_id, record, log.tx_hash, log.height)
    args = log.args
    row.client = str(args.get("client", record.client)).lower()
    row.provider = str(args.get("provider", record.provider)).lower()
    row.asset = str(args.get("token", record.asset.address)).lower()
    row.amount = str(args.get("amount", record.amount))
    deadline = int(args.get("deadline", record.deadline))
    row.deadline = block_time(deadline) if deadline else None
    return row


def _refresh_from_record(row: EscrowReplica, record: EscrowRecord) -> None:
    row.client = record.client
    row.provider = record.provider
    row.arbitrator = record.arbitrator
    row.asset = record.asset.address
    row.amount = str(record.amount)
    row.fee_rate = record.fee_rate
    row.fee = str(record.fee_paid)
    row.status = int(record.status)
    row.deadline = block_time(record.deadline) if record.deadline else None
    row.description = record.description
