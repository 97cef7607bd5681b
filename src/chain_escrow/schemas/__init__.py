"""Pydantic API schemas."""

from chain_escrow.schemas.escrow import (
    DisputeResponse,
    EscrowResponse,
    HealthResponse,
    NotificationResponse,
    StatisticsResponse,
)

__all__ = [
    "DisputeResponse",
    "EscrowResponse",
    "HealthResponse",
    "NotificationResponse",
    "StatisticsResponse",
]
