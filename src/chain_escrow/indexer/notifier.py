"""Participant notification sinks.

The indexer pushes one notification per observed transition to the client
and the provider of the escrow. Delivery is best-effort: the indexer logs
and drops whatever a sink raises.
"""

from __future__ import annotations

import json
from collections import defaultdict, deque
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from chain_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from chain_escrow.domain.enums import NotificationKind

logger = get_logger(__name__)

DEFAULT_HISTORY_SIZE = 50


@runtime_checkable
class Notifier(Protocol):
    async def notify(
        self,
        participant: str,
        kind: NotificationKind,
        escrow_id: int,
        details: dict[str, Any],
    ) -> None: ...

    async def history(self, participant: str) -> list[dict[str, Any]]: ...


def build_notification(
    participant: str,
    kind: NotificationKind,
    escrow_id: int,
    details: dict[str, Any],
) -> dict[str, Any]:
    return {
        "participant": participant.lower(),
        "kind": str(kind),
        "escrow_id": escrow_id,
        "details": details,
        "timestamp": datetime.now(UTC).isoformat(),
    }


class InMemoryNotifier:
    """Keeps the most recent notifications per address in process memory."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._history_size = history_size
        self._by_address: dict[str, deque[dict[str, Any]]] = defaultdict(
            lambda: deque(maxlen=self._history_size)
        )

    async def notify(
        self,
        participant: str,
        kind: NotificationKind,
        escrow_id: int,
        details: dict[str, Any],
    ) -> None:
        notification = build_notification(participant, kind, escrow_id, details)
        self._by_address[notification["participant"]].appendleft(notification)
        logger.debug(
            "notifier.delivered",
            participant=notification["participant"],
            kind=notification["kind"],
            escrow_id=escrow_id,
        )

    async def history(self, participant: str) -> list[dict[str, Any]]:
        """Newest first."""
        return list(self._by_address.get(participant.lower(), ()))


class RedisNotifier:
    """Publishes on ``{prefix}:{address}`` and keeps a capped history list.

    Subscribers listening on the channel get live pushes; the list lets a
    client that was offline catch up on the last ``history_size`` entries.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        channel_prefix: str = "notifications",
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        self._redis = redis
        self._prefix = channel_prefix
        self._history_size = history_size

    def channel(self, participant: str) -> str:
        return f"{self._prefix}:{participant.lower()}"

    def history_key(self, participant: str) -> str:
        return f"{self._prefix}:history:{participant.lower()}"

    async def notify(
        self,
        participant: str,
        kind: NotificationKind,
        escrow_id: int,
        details: dict[str, Any],
    ) -> None:
        notification = build_notification(participant, kind, escrow_id, details)
        payload = json.dumps(notification, default=str)
        key = self.history_key(participant)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lpush(key, payload)
            pipe.ltrim(key, 0, self._history_size - 1)
            pipe.publish(self.channel(participant), payload)
            await pipe.execute()
        logger.debug(
            "notifier.published",
            channel=self.channel(participant),
            kind=notification["kind"],
            escrow_id=escrow_id,
        )

    async def history(self, participant: str) -> list[dict[str, Any]]:
        """Newest first."""
        raw = await self._redis.lrange(self.history_key(participant), 0, self._history_size - 1)
        return [json.loads(item) for item in raw]
