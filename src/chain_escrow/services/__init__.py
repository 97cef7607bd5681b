"""Application services — read-side use cases over the replica."""

from chain_escrow.services.query_service import ReplicaQueryService

__all__ = ["ReplicaQueryService"]
