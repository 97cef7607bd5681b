"""Periodic driver for the EventIndexer.

One asyncio task per chain source, each ticking every ``poll_interval``
seconds. A cycle for a chain never overlaps another cycle for the same
chain: a tick that finds the previous cycle still running is skipped.
Chains are independent of each other.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from chain_escrow.logging_config import bound_context, get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from chain_escrow.indexer.reconciler import EventIndexer, SyncResult
    from chain_escrow.indexer.sources import LedgerSource

logger = get_logger(__name__)


class IndexerScheduler:
    """Runs ``EventIndexer.sync_chain`` on a fixed interval per chain."""

    def __init__(
        self,
        indexer: EventIndexer,
        sources: Iterable[LedgerSource],
        *,
        poll_interval: float = 30.0,
    ) -> None:
        self._indexer = indexer
        self._sources = {source.chain_id: source for source in sources}
        self._poll_interval = poll_interval
        self._locks = {chain_id: asyncio.Lock() for chain_id in self._sources}
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self.last_results: dict[int, SyncResult] = {}

    @property
    def chain_ids(self) -> list[int]:
        return list(self._sources)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def is_in_flight(self, chain_id: int) -> bool:
        return self._locks[chain_id].locked()

    async def run_once(self, chain_id: int) -> bool:
        """Run one cycle for ``chain_id``; False if one is already in flight."""
        lock = self._locks[chain_id]
        if lock.locked():
            logger.debug("indexer.cycle_skipped", chain_id=chain_id, reason="previous cycle in flight")
            return False
        async with lock:
            self.last_results[chain_id] = await self._indexer.sync_chain(self._sources[chain_id])
        return True

    def start(self) -> None:
        """Spawn the polling task for every chain. Idempotent."""
        for chain_id in self._sources:
            task = self._tasks.get(chain_id)
            if task is None or task.done():
                self._tasks[chain_id] = asyncio.create_task(
                    self._poll(chain_id), name=f"indexer-{chain_id}"
                )
        logger.info("indexer.scheduler_started", chains=self.chain_ids, interval=self._poll_interval)

    async def stop(self) -> None:
        """Cancel all polling tasks. An interrupted window is redone on the next start."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("indexer.scheduler_stopped")

    async def _poll(self, chain_id: int) -> None:
        with bound_context(chain_id=chain_id):
            while True:
                try:
                    await self.run_once(chain_id)
                except Exception:
                    # sync_chain already handles ledger and per-event failures;
                    # this covers the replica store itself being down.
                    logger.exception("indexer.cycle_crashed")
                await asyncio.sleep(self._poll_interval)
