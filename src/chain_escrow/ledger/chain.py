"""In-process ledger: an append-only, totally ordered transaction log.

Each call submitted through ``Chain.transact`` runs to completion under a
lock, as one all-or-nothing unit: every registered state holder (the asset
bank plus any deployed contracts) is snapshotted first and restored if the
call raises. A successful top-level call is sealed into its own block, with
its logs numbered by position. Calls made while a transaction is already
running (reentrant calls from a receive hook) get their own nested
snapshot; their logs join the outer transaction only if they succeed.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from chain_escrow.domain.fees import check_uint256
from chain_escrow.domain.models import LedgerLog, normalize_address
from chain_escrow.ledger.assets import AssetBank
from chain_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from chain_escrow.domain.enums import LedgerEventType

logger = get_logger(__name__)

DEFAULT_CHAIN_ID = 31337


class StateHolder(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


@dataclass(frozen=True)
class TransactionReceipt:
    """Outcome of a successful transaction."""

    tx_hash: str
    height: int
    timestamp: int
    sender: str
    value: int
    logs: tuple[LedgerLog, ...] = ()
    return_value: Any = None


@dataclass(frozen=True)
class Block:
    height: int
    timestamp: int
    receipts: tuple[TransactionReceipt, ...] = ()


@dataclass
class _Frame:
    tx_hash: str
    sender: str
    value: int
    timestamp: int
    logs: list[tuple[str, LedgerEventType, dict[str, Any]]] = field(default_factory=list)


class Chain:
    """A single-node chain holding blocks, receipts and world state."""

    def __init__(
        self,
        chain_id: int = DEFAULT_CHAIN_ID,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.chain_id = chain_id
        self.bank = AssetBank()
        self._clock = clock or (lambda: int(time.time()))
        self._holders: list[StateHolder] = [self.bank]
        self._blocks: list[Block] = [Block(height=0, timestamp=self._clock())]
        self._receipts: dict[str, TransactionReceipt] = {}
        self._frames: list[_Frame] = []
        self._nonce = 0
        self._deployments = 0
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration / views
    # ------------------------------------------------------------------

    def register(self, holder: StateHolder) -> None:
        """Include ``holder`` in every transaction's snapshot/rollback."""
        self._holders.append(holder)

    def next_deployment_nonce(self) -> int:
        """Distinct per contract deployed on this chain."""
        with self._lock:
            self._deployments += 1
            return self._deployments

    @property
    def height(self) -> int:
        return self._blocks[-1].height

    @property
    def block_timestamp(self) -> int:
        """Timestamp of the executing transaction, or of the latest block."""
        if self._frames:
            return self._frames[-1].timestamp
        return self._blocks[-1].timestamp

    def confirmed_height(self, confirmations: int = 0) -> int:
        return max(self.height - confirmations, 0)

    def get_block(self, height: int) -> Block:
        return self._blocks[height]

    def get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        return self._receipts.get(tx_hash)

    def get_logs(
        self,
        from_height: int,
        to_height: int,
        address: str | None = None,
    ) -> list[LedgerLog]:
        """Logs in ``[from_height, to_height]`` ordered by (height, log_index)."""
        address = address.lower() if address else None
        with self._lock:
            blocks = self._blocks[max(from_height, 0) : max(to_height + 1, 0)]
        return [
            log
            for block in blocks
            for receipt in block.receipts
            for log in receipt.logs
            if address is None or log.address == address
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def emit(self, address: str, event: LedgerEventType, args: dict[str, Any]) -> None:
        """Record a log on the executing transaction."""
        if not self._frames:
            raise RuntimeError("emit() called outside a transaction")
        self._frames[-1].logs.append((address.lower(), event, dict(args)))

    def transact(
        self,
        sender: str,
        to: str,
        call: Callable[[], Any],
        *,
        value: int = 0,
    ) -> TransactionReceipt:
        """Execute ``call`` atomically on behalf of ``sender``.

        ``value`` native units move from ``sender`` to ``to`` before ``call``
        runs. Any exception restores the state of every holder and
        propagates; nothing from the failed call is recorded.
        """
        sender = normalize_address(sender)
        check_uint256(value)
        with self._lock:
            outer = not self._frames
            if outer:
                self._nonce += 1
                frame = _Frame(
                    tx_hash=self._tx_hash(sender),
                    sender=sender,
                    value=value,
                    timestamp=self._next_timestamp(),
                )
            else:
                parent = self._frames[-1]
                frame = _Frame(parent.tx_hash, sender, value, parent.timestamp)

            snapshots = [holder.snapshot() for holder in self._holders]
            self._frames.append(frame)
            try:
                if value:
                    self.bank.send_native(sender, to, value)
                result = call()
            except BaseException:
                for holder, snapshot in zip(self._holders, snapshots, strict=True):
                    holder.restore(snapshot)
                raise
            finally:
                self._frames.pop()

            if not outer:
                self._frames[-1].logs.extend(frame.logs)
                return TransactionReceipt(
                    tx_hash=frame.tx_hash,
                    height=self.height + 1,
                    timestamp=frame.timestamp,
                    sender=sender,
                    value=value,
                    return_value=result,
                )
            return self._seal(frame, result)

    def mine(self, count: int = 1) -> int:
        """Append ``count`` empty blocks; returns the new height."""
        with self._lock:
            for _ in range(count):
                self._blocks.append(Block(height=self.height + 1, timestamp=self._next_timestamp()))
            return self.height

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _seal(self, frame: _Frame, result: Any) -> TransactionReceipt:
        height = self.height + 1
        logs = tuple(
            LedgerLog(
                height=height,
                log_index=index,
                tx_hash=frame.tx_hash,
                event=event,
                args=args,
                timestamp=frame.timestamp,
                address=address,
            )
            for index, (address, event, args) in enumerate(frame.logs)
        )
        receipt = TransactionReceipt(
            tx_hash=frame.tx_hash,
            height=height,
            timestamp=frame.timestamp,
            sender=frame.sender,
            value=frame.value,
            logs=logs,
            return_value=result,
        )
        self._blocks.append(Block(height=height, timestamp=frame.timestamp, receipts=(receipt,)))
        self._receipts[receipt.tx_hash] = receipt
        logger.debug("chain.block_sealed", height=height, tx_hash=receipt.tx_hash, logs=len(logs))
        return receipt

    def _next_timestamp(self) -> int:
        return max(self._clock(), self._blocks[-1].timestamp + 1)

    def _tx_hash(self, sender: str) -> str:
        digest = hashlib.sha256(f"{self.chain_id}:{sender}:{self._nonce}".encode()).hexdigest()
        return "0x" + digest
