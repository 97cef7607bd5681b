"""Participant notification history (read-only).

Routes:
    GET /api/v1/notifications/{address} — Most recent notifications, newest first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from chain_escrow.api.deps import get_notifier
from chain_escrow.indexer.notifier import Notifier
from chain_escrow.schemas.escrow import NotificationResponse

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


@router.get(
    "/{address}",
    response_model=list[NotificationResponse],
    summary="Recent notifications for an address",
)
async def get_notifications(
    address: str,
    notifier: Notifier = Depends(get_notifier),
) -> list[NotificationResponse]:
    return [NotificationResponse.model_validate(n) for n in await notifier.history(address)]
