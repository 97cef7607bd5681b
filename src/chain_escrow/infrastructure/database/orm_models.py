"""SQLAlchemy 2.0 ORM models for the escrow replica.

Three tables:
    1. escrows          — Off-chain mirror of every EscrowRecord, one row per (chain_id, escrow_id).
    2. disputes         — One row per dispute opening, closed when resolved.
    3. indexer_cursors  — Highest fully processed ledger height per chain.

Design decisions:
    - UUIDs as surrogate primary keys; (chain_id, escrow_id) is the natural key.
    - Amounts as decimal strings (String(78)): uint256 does not fit any SQL numeric type portably.
    - Addresses stored lower-cased so participant filters are plain equality.
    - Portable column types (Uuid, String, DateTime) so the same models run on
      PostgreSQL and SQLite.
    - Only the indexer writes these tables; the query surface is read-only.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. escrows
# ---------------------------------------------------------------------------
class EscrowReplica(Base):
    """Replica of one on-chain escrow record."""

    __tablename__ = "escrows"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Natural key ---
    chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    escrow_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # --- Participants ---
    client: Mapped[str] = mapped_column(String(42), nullable=False)
    provider: Mapped[str] = mapped_column(String(42), nullable=False)
    arbitrator: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        comment="Per-escrow arbitrator; the zero address means registry arbitrators only",
    )

    # --- Financials ---
    asset: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        comment="Token address, or the zero address for the native currency",
    )
    amount: Mapped[str] = mapped_column(String(78), nullable=False)
    fee_rate: Mapped[int] = mapped_column(Integer, nullable=False, comment="Basis points")
    fee: Mapped[str] = mapped_column(
        String(78),
        nullable=False,
        default="0",
        comment="Realized fee, nonzero only after release",
    )

    # --- Status ---
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Terms ---
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # --- Provenance ---
    source_tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    source_height: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        comment="Block time of creation on the ledger",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        UniqueConstraint("chain_id", "escrow_id", name="uq_escrow_chain_escrow_id"),
        CheckConstraint("status BETWEEN 0 AND 5", name="ck_escrow_valid_status"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_client", "client"),
        Index("idx_escrow_provider", "provider"),
        Index("idx_escrow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowReplica chain={self.chain_id} escrow_id={self.escrow_id} "
            f"status={self.status} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# 2. disputes
# ---------------------------------------------------------------------------
class DisputeReplica(Base):
    """A dispute raised on an escrow, as observed from the ledger."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    escrow_uuid: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )

    opener: Mapped[str] = mapped_column(String(42), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="OPEN")
    resolver: Mapped[str | None] = mapped_column(String(42), nullable=True, default=None)
    in_favor_of_client: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=None)

    opened_tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    resolved_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True, default=None)

    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    __table_args__ = (
        UniqueConstraint("escrow_uuid", "opened_tx_hash", name="uq_dispute_opening"),
        CheckConstraint("status IN ('OPEN', 'RESOLVED')", name="ck_dispute_valid_status"),
        Index("idx_dispute_escrow", "escrow_uuid"),
        Index("idx_dispute_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<DisputeReplica id={self.id} escrow={self.escrow_uuid} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. indexer_cursors
# ---------------------------------------------------------------------------
class IndexerCursor(Base):
    """Resume point of the indexer for one chain. Only ever moves forward."""

    __tablename__ = "indexer_cursors"

    chain_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    last_height: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<IndexerCursor chain={self.chain_id} last_height={self.last_height}>"
