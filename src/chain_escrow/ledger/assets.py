"""Asset custody for the in-process ledger.

``AssetBank`` holds native balances plus per-token balances and allowances.
The escrow contract never touches it directly: it goes through an
``AssetHandler`` (``transfer_in`` / ``transfer_out``) chosen by the record's
asset variant.

Recipients can be marked as rejecting native transfers, or given a receive
hook that runs after they are credited (the equivalent of a contract's
fallback function). Hooks are how reentrant calls reach the ledger.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from chain_escrow.domain.exceptions import (
    AmountMismatchError,
    InsufficientAllowanceError,
    TransferFailedError,
    UnexpectedValueError,
)
from chain_escrow.domain.fees import check_uint256
from chain_escrow.domain.models import NativeAsset, TokenAsset, normalize_address

if TYPE_CHECKING:
    from collections.abc import Callable

    from chain_escrow.domain.models import Asset


@dataclass
class _TokenState:
    balances: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    allowances: dict[tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class _BankState:
    native: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    tokens: dict[str, _TokenState] = field(default_factory=dict)


class AssetBank:
    """Balances for the native currency and every deployed token."""

    def __init__(self) -> None:
        self._state = _BankState()
        self._rejecting: set[str] = set()
        self._receive_hooks: dict[str, Callable[[str, str, int], None]] = {}

    # ------------------------------------------------------------------
    # Transaction support
    # ------------------------------------------------------------------

    def snapshot(self) -> _BankState:
        return copy.deepcopy(self._state)

    def restore(self, snapshot: _BankState) -> None:
        self._state = snapshot

    # ------------------------------------------------------------------
    # Setup helpers (genesis allocation, test fixtures)
    # ------------------------------------------------------------------

    def mint_native(self, address: str, amount: int) -> None:
        address = normalize_address(address)
        self._state.native[address] = check_uint256(self._state.native[address] + amount)

    def deploy_token(self, token: str) -> TokenAsset:
        asset = TokenAsset(token)
        self._state.tokens.setdefault(asset.token, _TokenState())
        return asset

    def mint_token(self, token: str, address: str, amount: int) -> None:
        state = self._token(token)
        address = normalize_address(address)
        state.balances[address] = check_uint256(state.balances[address] + amount)

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        state = self._token(token)
        state.allowances[(normalize_address(owner), normalize_address(spender))] = check_uint256(amount)

    def reject_transfers(self, address: str, rejecting: bool = True) -> None:
        """Make native transfers to ``address`` fail (a non-payable recipient)."""
        address = normalize_address(address)
        if rejecting:
            self._rejecting.add(address)
        else:
            self._rejecting.discard(address)

    def set_receive_hook(self, address: str, hook: Callable[[str, str, int], None] | None) -> None:
        """Run ``hook(asset_key, sender, amount)`` whenever ``address`` is paid."""
        address = normalize_address(address)
        if hook is None:
            self._receive_hooks.pop(address, None)
        else:
            self._receive_hooks[address] = hook

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def native_balance(self, address: str) -> int:
        return self._state.native.get(address.lower(), 0)

    def token_balance(self, token: str, address: str) -> int:
        return self._token(token).balances.get(address.lower(), 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self._token(token).allowances.get((owner.lower(), spender.lower()), 0)

    def balance_of(self, asset: Asset, address: str) -> int:
        if isinstance(asset, TokenAsset):
            return self.token_balance(asset.token, address)
        return self.native_balance(address)

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def send_native(self, sender: str, recipient: str, amount: int) -> None:
        sender, recipient = sender.lower(), recipient.lower()
        if recipient in self._rejecting:
            raise TransferFailedError("native", recipient, amount, "recipient rejected transfer")
        if self._state.native.get(sender, 0) < amount:
            raise TransferFailedError("native", recipient, amount, "insufficient balance")
        self._state.native[sender] -= amount
        self._state.native[recipient] += amount
        self._notify_receiver("native", sender, recipient, amount)

    def transfer_token(self, token: str, sender: str, recipient: str, amount: int) -> None:
        state = self._token(token)
        sender, recipient = sender.lower(), recipient.lower()
        if state.balances.get(sender, 0) < amount:
            raise TransferFailedError(token, recipient, amount, "insufficient token balance")
        state.balances[sender] -= amount
        state.balances[recipient] += amount
        self._notify_receiver(token, sender, recipient, amount)

    def transfer_from(self, token: str, spender: str, owner: str, recipient: str, amount: int) -> None:
        state = self._token(token)
        spender, owner = spender.lower(), owner.lower()
        approved = state.allowances.get((owner, spender), 0)
        if approved < amount:
            raise InsufficientAllowanceError(token, owner, amount, approved)
        state.allowances[(owner, spender)] = approved - amount
        self.transfer_token(token, owner, recipient, amount)

    def _token(self, token: str) -> _TokenState:
        token = normalize_address(token)
        try:
            return self._state.tokens[token]
        except KeyError:
            raise TransferFailedError(token, token, 0, "token not deployed") from None

    def _notify_receiver(self, asset_key: str, sender: str, recipient: str, amount: int) -> None:
        hook = self._receive_hooks.get(recipient)
        if hook is not None:
            hook(asset_key, sender, amount)


# ---------------------------------------------------------------------------
# Asset handlers
# ---------------------------------------------------------------------------
class AssetHandler(Protocol):
    """Capability interface for moving one asset in and out of custody."""

    def transfer_in(self, sender: str, amount: int, value: int) -> None: ...

    def transfer_out(self, recipient: str, amount: int) -> None: ...


class NativeAssetHandler:
    """Native currency: value arrives with the call itself."""

    def __init__(self, bank: AssetBank, custodian: str) -> None:
        self._bank = bank
        self._custodian = custodian

    def transfer_in(self, sender: str, amount: int, value: int) -> None:
        # The chain has already credited ``value`` to the custodian.
        if value != amount:
            raise AmountMismatchError(expected=amount, received=value)

    def transfer_out(self, recipient: str, amount: int) -> None:
        self._bank.send_native(self._custodian, recipient, amount)


class TokenAssetHandler:
    """Fungible token: pulled from the sender against a prior approval."""

    def __init__(self, bank: AssetBank, token: str, custodian: str) -> None:
        self._bank = bank
        self._token = token
        self._custodian = custodian

    def transfer_in(self, sender: str, amount: int, value: int) -> None:
        if value:
            raise UnexpectedValueError(value)
        self._bank.transfer_from(self._token, self._custodian, sender, self._custodian, amount)

    def transfer_out(self, recipient: str, amount: int) -> None:
        self._bank.transfer_token(self._token, self._custodian, recipient, amount)


def handler_for(asset: Asset, bank: AssetBank, custodian: str) -> AssetHandler:
    """Pick the transfer capability for an asset variant."""
    match asset:
        case TokenAsset(token=token):
            return TokenAssetHandler(bank, token, custodian)
        case NativeAsset():
            return NativeAssetHandler(bank, custodian)
    raise TypeError(f"Unsupported asset: {asset!r}")
