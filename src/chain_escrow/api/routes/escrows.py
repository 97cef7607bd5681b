"""Escrow replica REST API routes.

Routes:
    GET /api/v1/escrows                              — List with filters
    GET /api/v1/escrows/statistics                   — Counts by status + volume
    GET /api/v1/escrows/participant/{address}        — Escrows for a client/provider
    GET /api/v1/escrows/chain/{chain_id}/{escrow_id} — Lookup by on-chain identity
    GET /api/v1/escrows/{escrow_uuid}                — Lookup by replica id
    POST /api/v1/escrows/{escrow_uuid}/sync          — Resync one escrow from its ledger
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from chain_escrow.api.deps import get_indexer, get_ledger_sources, get_query_service
from chain_escrow.domain.enums import EscrowStatus
from chain_escrow.domain.exceptions import LedgerUnavailableError
from chain_escrow.indexer.reconciler import EventIndexer
from chain_escrow.indexer.sources import LedgerSource
from chain_escrow.logging_config import get_logger
from chain_escrow.schemas.escrow import EscrowResponse, StatisticsResponse
from chain_escrow.services.query_service import ReplicaQueryService

router = APIRouter(prefix="/api/v1/escrows", tags=["Escrows"])
logger = get_logger(__name__)


@router.get(
    "",
    response_model=list[EscrowResponse],
    summary="List replicated escrows",
)
async def list_escrows(
    chain_id: int | None = Query(default=None),
    client: str | None = Query(default=None, description="Client address (case-insensitive)"),
    provider: str | None = Query(default=None, description="Provider address (case-insensitive)"),
    status: EscrowStatus | None = Query(default=None, description="Status code 0-5"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: ReplicaQueryService = Depends(get_query_service),
) -> list[EscrowResponse]:
    escrows = await service.list_escrows(
        chain_id=chain_id,
        client=client,
        provider=provider,
        status=status,
        limit=limit,
        offset=offset,
    )
    return [EscrowResponse.model_validate(e) for e in escrows]


@router.get(
    "/statistics",
    response_model=StatisticsResponse,
    summary="Escrow counts by status and total volume",
)
async def get_statistics(
    address: str | None = Query(default=None, description="Restrict to one participant"),
    service: ReplicaQueryService = Depends(get_query_service),
) -> StatisticsResponse:
    return StatisticsResponse.from_stats(await service.get_statistics(address))


@router.get(
    "/participant/{address}",
    response_model=list[EscrowResponse],
    summary="Escrows where the address is client or provider",
)
async def get_by_participant(
    address: str,
    service: ReplicaQueryService = Depends(get_query_service),
) -> list[EscrowResponse]:
    escrows = await service.get_by_participant(address)
    return [EscrowResponse.model_validate(e) for e in escrows]


@router.get(
    "/chain/{chain_id}/{escrow_id}",
    response_model=EscrowResponse,
    summary="Look up an escrow by chain id and on-chain escrow id",
)
async def get_by_chain_and_id(
    chain_id: int,
    escrow_id: int,
    service: ReplicaQueryService = Depends(get_query_service),
) -> EscrowResponse:
    return EscrowResponse.model_validate(await service.get_by_chain_and_id(chain_id, escrow_id))


@router.get(
    "/{escrow_uuid}",
    response_model=EscrowResponse,
    summary="Get a replicated escrow",
)
async def get_escrow(
    escrow_uuid: uuid.UUID,
    service: ReplicaQueryService = Depends(get_query_service),
) -> EscrowResponse:
    return EscrowResponse.model_validate(await service.get_escrow(escrow_uuid))


@router.post(
    "/{escrow_uuid}/sync",
    response_model=EscrowResponse,
    summary="Re-read an escrow from its ledger and overwrite the replica",
)
async def sync_escrow(
    escrow_uuid: uuid.UUID,
    service: ReplicaQueryService = Depends(get_query_service),
    indexer: EventIndexer = Depends(get_indexer),
    sources: dict[int, LedgerSource] = Depends(get_ledger_sources),
) -> EscrowResponse:
    escrow = await service.get_escrow(escrow_uuid)
    source = sources.get(escrow.chain_id)
    if source is None:
        raise LedgerUnavailableError(escrow.chain_id, "resync_escrow", "no source configured")
    synced = await indexer.resync_escrow(source, escrow.escrow_id)
    logger.info("api.escrow_synced", escrow_uuid=str(escrow_uuid), status=synced.status)
    return EscrowResponse.model_validate(synced)
