"""Pydantic schemas for the read-only replica API.

These schemas define the response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API
and database layers. uint256 quantities travel as decimal strings.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from chain_escrow.domain.enums import EscrowStatus

# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EscrowResponse(BaseModel):
    """Response schema for a replicated escrow."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    chain_id: int
    escrow_id: int
    client: str
    provider: str
    arbitrator: str
    asset: str = Field(description="Token address, or the zero address for the native currency")
    amount: str
    fee_rate: int = Field(description="Basis points, fixed at creation")
    fee: str = Field(description="Realized fee; nonzero only once released")
    status: int
    deadline: datetime | None
    description: str
    source_tx_hash: str
    source_height: int
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status_name(self) -> str:
        return EscrowStatus(self.status).name


class DisputeResponse(BaseModel):
    """Response schema for a replicated dispute."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_uuid: uuid.UUID
    opener: str
    status: str
    resolver: str | None
    in_favor_of_client: bool | None
    opened_tx_hash: str
    resolved_tx_hash: str | None
    opened_at: datetime
    resolved_at: datetime | None


class StatisticsResponse(BaseModel):
    """Aggregate counts over the replica."""

    total: int
    by_status: dict[str, int]
    total_volume: str

    @classmethod
    def from_stats(cls, stats: dict[str, Any]) -> StatisticsResponse:
        return cls(
            total=stats["total"],
            by_status=stats["by_status"],
            total_volume=str(stats["total_volume"]),
        )


class NotificationResponse(BaseModel):
    """One entry of a participant's notification history."""

    participant: str
    kind: str
    escrow_id: int
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    indexer: dict[str, int] = Field(
        default_factory=dict,
        description="Last fully indexed height per chain id",
    )
