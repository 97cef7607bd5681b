"""Ledger sources: the read/poll surface the indexer follows.

A source answers three questions for one chain: how far is final, which
escrow logs landed in a height range, and what does the ledger currently
hold for an escrow id.

    InProcessLedgerSource — reads an in-process Chain + EscrowLedger.
    Web3LedgerSource      — reads a deployed contract over JSON-RPC (web3.py).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError

from chain_escrow.domain.enums import EscrowStatus, LedgerEventType
from chain_escrow.domain.exceptions import EscrowNotFoundError, LedgerUnavailableError
from chain_escrow.domain.fees import compute_fee_split
from chain_escrow.domain.models import EscrowRecord, LedgerLog, asset_from_address
from chain_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chain_escrow.ledger.contract import EscrowLedger

logger = get_logger(__name__)


@runtime_checkable
class LedgerSource(Protocol):
    """What the indexer needs from a ledger deployment."""

    chain_id: int

    async def get_confirmed_height(self) -> int:
        """Highest height considered final."""
        ...

    async def get_logs(self, from_height: int, to_height: int) -> list[LedgerLog]:
        """Escrow contract logs in ``[from_height, to_height]``, ordered by (height, log_index)."""
        ...

    async def get_escrow(self, escrow_id: int) -> EscrowRecord:
        """Canonical record as currently held by the ledger."""
        ...


# ---------------------------------------------------------------------------
# In-process ledger
# ---------------------------------------------------------------------------
class InProcessLedgerSource:
    """Source over an in-process ledger, with a configurable confirmation depth."""

    def __init__(self, ledger: EscrowLedger, *, confirmations: int = 0) -> None:
        self._ledger = ledger
        self._chain = ledger.chain
        self.chain_id = self._chain.chain_id
        self.confirmations = confirmations

    async def get_confirmed_height(self) -> int:
        return self._chain.confirmed_height(self.confirmations)

    async def get_logs(self, from_height: int, to_height: int) -> list[LedgerLog]:
        return self._chain.get_logs(from_height, to_height, address=self._ledger.address)

    async def get_escrow(self, escrow_id: int) -> EscrowRecord:
        return self._ledger.get_escrow(escrow_id)


# ---------------------------------------------------------------------------
# Deployed contract over JSON-RPC
# ---------------------------------------------------------------------------
_ADDRESS = "address"
_UINT = "uint256"

ESCROW_ABI: list[dict[str, Any]] = [
    {
        "type": "event",
        "name": "EscrowCreated",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": _UINT, "indexed": True},
            {"name": "client", "type": _ADDRESS, "indexed": True},
            {"name": "provider", "type": _ADDRESS, "indexed": True},
            {"name": "token", "type": _ADDRESS, "indexed": False},
            {"name": "amount", "type": _UINT, "indexed": False},
            {"name": "deadline", "type": _UINT, "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "EscrowFunded",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": _UINT, "indexed": True},
            {"name": "funder", "type": _ADDRESS, "indexed": True},
            {"name": "amount", "type": _UINT, "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "EscrowReleased",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": _UINT, "indexed": True},
            {"name": "provider", "type": _ADDRESS, "indexed": True},
            {"name": "amount", "type": _UINT, "indexed": False},
            {"name": "fee", "type": _UINT, "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "EscrowRefunded",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": _UINT, "indexed": True},
            {"name": "client", "type": _ADDRESS, "indexed": True},
            {"name": "amount", "type": _UINT, "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "DisputeOpened",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": _UINT, "indexed": True},
            {"name": "opener", "type": _ADDRESS, "indexed": True},
            {"name": "timestamp", "type": _UINT, "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "DisputeResolved",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": _UINT, "indexed": True},
            {"name": "arbitrator", "type": _ADDRESS, "indexed": True},
            {"name": "inFavorOfClient", "type": "bool", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "EscrowCancelled",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": _UINT, "indexed": True},
            {"name": "client", "type": _ADDRESS, "indexed": True},
        ],
    },
    {
        "type": "function",
        "name": "getEscrow",
        "stateMutability": "view",
        "inputs": [{"name": "escrowId", "type": _UINT}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "client", "type": _ADDRESS},
                    {"name": "provider", "type": _ADDRESS},
                    {"name": "arbitrator", "type": _ADDRESS},
                    {"name": "token", "type": _ADDRESS},
                    {"name": "amount", "type": _UINT},
                    # Fee rate in basis points snapshotted at creation, not the fee paid.
                    {"name": "fee", "type": _UINT},
                    {"name": "status", "type": "uint8"},
                    {"name": "createdAt", "type": _UINT},
                    {"name": "deadline", "type": _UINT},
                    {"name": "description", "type": "string"},
                ],
            }
        ],
    },
    {
        "type": "function",
        "name": "getEscrowCount",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": _UINT}],
    },
]

_INDEXED_EVENTS = (
    LedgerEventType.ESCROW_CREATED,
    LedgerEventType.ESCROW_FUNDED,
    LedgerEventType.ESCROW_RELEASED,
    LedgerEventType.ESCROW_REFUNDED,
    LedgerEventType.DISPUTE_OPENED,
    LedgerEventType.DISPUTE_RESOLVED,
    LedgerEventType.ESCROW_CANCELLED,
)


def _hex(value: Any) -> str:
    """Render HexBytes / bytes / str as a 0x-prefixed lower-case hex string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _plain(value: Any) -> Any:
    """Lower-case addresses; leave everything else alone."""
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return value.lower()
    return value


class Web3LedgerSource:
    """Source over a deployed escrow contract, using web3.py's async client.

    Transient RPC failures are retried with exponential backoff; whatever
    still fails surfaces as LedgerUnavailableError.
    """

    def __init__(
        self,
        chain_id: int,
        rpc_url: str,
        contract_address: str,
        *,
        confirmations: int = 2,
        w3: AsyncWeb3 | None = None,
        max_attempts: int = 3,
    ) -> None:
        self.chain_id = chain_id
        self.confirmations = confirmations
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=ESCROW_ABI,
        )
        self._max_attempts = max_attempts
        self._block_times: dict[int, int] = {}

    async def get_confirmed_height(self) -> int:
        head = await self._call("block_number", lambda: self._w3.eth.block_number)
        return max(head - self.confirmations, 0)

    async def get_logs(self, from_height: int, to_height: int) -> list[LedgerLog]:
        logs: list[LedgerLog] = []
        for event_type in _INDEXED_EVENTS:
            event = getattr(self._contract.events, event_type.value)
            entries = await self._call(
                f"get_logs:{event_type.value}",
                lambda event=event: event.get_logs(from_block=from_height, to_block=to_height),
            )
            for entry in entries:
                height = int(entry["blockNumber"])
                logs.append(
                    LedgerLog(
                        height=height,
                        log_index=int(entry["logIndex"]),
                        tx_hash=_hex(entry["transactionHash"]),
                        event=event_type,
                        args={key: _plain(value) for key, value in dict(entry["args"]).items()},
                        timestamp=await self._block_time(height),
                        address=str(entry["address"]).lower(),
                    )
                )
        logs.sort(key=lambda log: log.position)
        return logs

    async def get_escrow(self, escrow_id: int) -> EscrowRecord:
        try:
            data = await self._call(
                "getEscrow",
                lambda: self._contract.functions.getEscrow(escrow_id).call(),
            )
        except LedgerUnavailableError as err:
            if isinstance(err.__cause__, ContractLogicError):
                raise EscrowNotFoundError(escrow_id) from err
            raise
        # The contract stores no realized fee; it follows from the rate on release.
        client, provider, arbitrator, token, amount, fee_rate, status, created_at, deadline, description = data
        status = EscrowStatus(int(status))
        fee_paid = (
            compute_fee_split(int(amount), int(fee_rate)).fee_amount
            if status is EscrowStatus.RELEASED
            else 0
        )
        return EscrowRecord(
            escrow_id=escrow_id,
            client=client.lower(),
            provider=provider.lower(),
            arbitrator=arbitrator.lower(),
            asset=asset_from_address(token),
            amount=int(amount),
            fee_rate=int(fee_rate),
            status=status,
            created_at=int(created_at),
            deadline=int(deadline),
            description=description,
            fee_paid=fee_paid,
        )

    async def _block_time(self, height: int) -> int:
        if height not in self._block_times:
            block = await self._call("get_block", lambda: self._w3.eth.get_block(height))
            self._block_times[height] = int(block["timestamp"])
        return self._block_times[height]

    async def _call(self, operation: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run one RPC read with retries, mapping exhaustion to LedgerUnavailableError."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
                retry=retry_if_exception_type((OSError, TimeoutError)),
                reraise=True,
            ):
                with attempt:
                    return await fn()
        except Exception as err:
            logger.warning(
                "ledger_source.read_failed",
                chain_id=self.chain_id,
                operation=operation,
                error=str(err),
            )
            raise LedgerUnavailableError(self.chain_id, operation, str(err)) from err
