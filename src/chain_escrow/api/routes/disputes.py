"""Dispute replica REST API routes (read-only).

Routes:
    GET /api/v1/disputes               — List, optionally by status or escrow
    GET /api/v1/disputes/{dispute_id}  — Get one dispute
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from chain_escrow.api.deps import get_query_service
from chain_escrow.domain.enums import DisputeStatus
from chain_escrow.schemas.escrow import DisputeResponse
from chain_escrow.services.query_service import ReplicaQueryService

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])


@router.get("", response_model=list[DisputeResponse], summary="List disputes")
async def list_disputes(
    status: DisputeStatus | None = Query(default=None),
    escrow_uuid: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: ReplicaQueryService = Depends(get_query_service),
) -> list[DisputeResponse]:
    disputes = await service.list_disputes(
        status=status, escrow_uuid=escrow_uuid, limit=limit, offset=offset
    )
    return [DisputeResponse.model_validate(d) for d in disputes]


@router.get("/{dispute_id}", response_model=DisputeResponse, summary="Get a dispute")
async def get_dispute(
    dispute_id: uuid.UUID,
    service: ReplicaQueryService = Depends(get_query_service),
) -> DisputeResponse:
    return DisputeResponse.model_validate(await service.get_dispute(dispute_id))
