"""Framework-agnostic value types shared by the ledger and the indexer.

Assets are a tagged variant: ``NativeAsset`` for the chain's currency and
``TokenAsset`` for a fungible token contract. On the wire the native asset is
encoded as the zero address, which is the only place that sentinel appears.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from chain_escrow.domain.enums import EscrowStatus, LedgerEventType
from chain_escrow.domain.exceptions import InvalidPartyError

ZERO_ADDRESS = "0x" + "0" * 40
UINT256_MAX = 2**256 - 1

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> str:
    """Lower-case an EVM-style address, rejecting malformed input."""
    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        raise InvalidPartyError(f"Malformed address: {address!r}")
    return address.lower()


def is_zero_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class NativeAsset:
    """The chain's native currency. ``NATIVE`` is its only instance."""

    def __copy__(self) -> NativeAsset:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> NativeAsset:
        return self

    @property
    def address(self) -> str:
        return ZERO_ADDRESS

    @property
    def key(self) -> str:
        return "native"


@dataclass(frozen=True)
class TokenAsset:
    """A fungible token identified by its contract address."""

    token: str

    def __post_init__(self) -> None:
        token = normalize_address(self.token)
        if token == ZERO_ADDRESS:
            raise InvalidPartyError("Token address must not be the zero address")
        object.__setattr__(self, "token", token)

    @property
    def address(self) -> str:
        return self.token

    @property
    def key(self) -> str:
        return self.token


Asset = NativeAsset | TokenAsset

NATIVE = NativeAsset()


def asset_from_address(address: str) -> Asset:
    """Decode the wire form of an asset (zero address = native)."""
    if is_zero_address(normalize_address(address)):
        return NATIVE
    return TokenAsset(address)


# ---------------------------------------------------------------------------
# Escrow record (authoritative ledger state)
# ---------------------------------------------------------------------------
@dataclass
class EscrowRecord:
    """One client/provider agreement as held by the ledger."""

    escrow_id: int
    client: str
    provider: str
    arbitrator: str
    asset: Asset
    amount: int
    fee_rate: int
    status: EscrowStatus
    created_at: int
    deadline: int = 0
    description: str = ""
    fee_paid: int = 0

    @property
    def participants(self) -> tuple[str, str]:
        return (self.client, self.provider)


# ---------------------------------------------------------------------------
# Ledger logs
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LedgerLog:
    """A log event observed on the ledger, ordered by (height, log_index)."""

    height: int
    log_index: int
    tx_hash: str
    event: LedgerEventType
    args: dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0
    address: str = ""

    @property
    def escrow_id(self) -> int | None:
        value = self.args.get("escrowId")
        return None if value is None else int(value)

    @property
    def position(self) -> tuple[int, int]:
        return (self.height, self.log_index)


# ---------------------------------------------------------------------------
# Fee computation results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FeeSplit:
    provider_amount: int
    fee_amount: int

    @property
    def total(self) -> int:
        return self.provider_amount + self.fee_amount


@dataclass(frozen=True)
class Payout:
    recipient: str
    amount: int
