"""Off-chain indexer: follows ledger logs into the replica and notifies participants."""

from chain_escrow.indexer.notifier import InMemoryNotifier, Notifier, RedisNotifier
from chain_escrow.indexer.reconciler import EventIndexer, SyncResult
from chain_escrow.indexer.scheduler import IndexerScheduler
from chain_escrow.indexer.sources import InProcessLedgerSource, LedgerSource, Web3LedgerSource

__all__ = [
    "InMemoryNotifier",
    "Notifier",
    "RedisNotifier",
    "EventIndexer",
    "SyncResult",
    "IndexerScheduler",
    "InProcessLedgerSource",
    "LedgerSource",
    "Web3LedgerSource",
]
