"""Escrow Ledger Contract — the authoritative escrow state machine.

Owns fund custody and every status transition. Each public mutating method
is submitted to the Chain as one transaction, so validation failures,
authorization failures and failed transfers all leave no trace.

Ordering inside every settling call is checks, then effects, then external
transfers: the record is already RELEASED/REFUNDED by the time value leaves
custody, and the reentrancy guard is held for the whole external step.

Operations and their emitted events:
    create            -> EscrowCreated(escrowId, client, provider, token, amount, deadline)
    fund              -> EscrowFunded(escrowId, funder, amount)
    release           -> EscrowReleased(escrowId, provider, amount, fee)
    refund            -> EscrowRefunded(escrowId, client, amount)
    open_dispute      -> DisputeOpened(escrowId, opener, timestamp)
    resolve_dispute   -> DisputeResolved(escrowId, arbitrator, inFavorOfClient)
                         followed by EscrowRefunded or EscrowReleased
    cancel            -> EscrowCancelled(escrowId, client)
"""

from __future__ import annotations

import copy
import hashlib
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from chain_escrow.config import get_settings
from chain_escrow.domain.access import AccessPolicy, ArbitratorRegistry
from chain_escrow.domain.enums import EscrowStatus, LedgerEventType
from chain_escrow.domain.exceptions import (
    EscrowNotFoundError,
    InvalidAmountError,
    InvalidDeadlineError,
    InvalidPartyError,
    ReentrantCallError,
    UnexpectedValueError,
)
from chain_escrow.domain.fees import (
    DEFAULT_FEE_RATE,
    MAX_FEE_RATE,
    check_uint256,
    compute_fee_split,
    refund_payouts,
    release_payouts,
    validate_fee_rate,
)
from chain_escrow.domain.models import (
    ZERO_ADDRESS,
    EscrowRecord,
    asset_from_address,
    is_zero_address,
    normalize_address,
)
from chain_escrow.domain.state_machine import guard_transition
from chain_escrow.ledger.assets import handler_for
from chain_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from chain_escrow.config import Settings
    from chain_escrow.domain.models import Asset
    from chain_escrow.ledger.assets import AssetHandler
    from chain_escrow.ledger.chain import Chain, TransactionReceipt

logger = get_logger(__name__)


@dataclass
class LedgerState:
    """Everything the contract stores. Snapshotted per transaction."""

    access: AccessPolicy
    fee_collector: str
    default_fee_rate: int
    escrows: dict[int, EscrowRecord] = field(default_factory=dict)
    next_escrow_id: int = 0
    collected_fees: dict[str, int] = field(default_factory=lambda: defaultdict(int))


class EscrowLedger:
    """The escrow contract deployed on a Chain."""

    def __init__(
        self,
        chain: Chain,
        owner: str,
        fee_collector: str,
        *,
        address: str | None = None,
        default_fee_rate: int = DEFAULT_FEE_RATE,
        max_fee_rate: int = MAX_FEE_RATE,
    ) -> None:
        fee_collector = normalize_address(fee_collector)
        if is_zero_address(fee_collector):
            raise InvalidPartyError("Invalid fee collector address")

        self._chain = chain
        self.max_fee_rate = max_fee_rate
        self.address = (
            normalize_address(address)
            if address
            else self._derive_address(chain.chain_id, owner, chain.next_deployment_nonce())
        )
        self._state = LedgerState(
            access=AccessPolicy(owner=owner, registry=ArbitratorRegistry()),
            fee_collector=fee_collector,
            default_fee_rate=validate_fee_rate(default_fee_rate, max_fee_rate),
        )
        self._entered = False
        chain.register(self)
        logger.info(
            "ledger.deployed",
            chain_id=chain.chain_id,
            address=self.address,
            owner=self.owner,
            fee_collector=fee_collector,
            default_fee_rate=default_fee_rate,
        )

    @classmethod
    def from_settings(
        cls, chain: Chain, owner: str, fee_collector: str, settings: Settings | None = None
    ) -> EscrowLedger:
        """Deploy with the fee rates from application settings."""
        settings = settings or get_settings()
        return cls(
            chain,
            owner,
            fee_collector,
            default_fee_rate=settings.ledger_default_fee_rate,
            max_fee_rate=settings.ledger_max_fee_rate,
        )

    # ------------------------------------------------------------------
    # Snapshot support (called by the Chain)
    # ------------------------------------------------------------------

    def snapshot(self) -> LedgerState:
        return copy.deepcopy(self._state)

    def restore(self, snapshot: LedgerState) -> None:
        # In place: an enclosing call may still hold records from this state.
        state = self._state
        for escrow_id in set(state.escrows) - set(snapshot.escrows):
            del state.escrows[escrow_id]
        for escrow_id, saved in snapshot.escrows.items():
            current = state.escrows.get(escrow_id)
            if current is None:
                state.escrows[escrow_id] = saved
            else:
                vars(current).update(vars(saved))
        state.access.owner = snapshot.access.owner
        state.access.registry.members = snapshot.access.registry.members
        state.fee_collector = snapshot.fee_collector
        state.default_fee_rate = snapshot.default_fee_rate
        state.next_escrow_id = snapshot.next_escrow_id
        state.collected_fees = snapshot.collected_fees

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def chain(self) -> Chain:
        return self._chain

    @property
    def owner(self) -> str:
        return self._state.access.owner

    @property
    def fee_collector(self) -> str:
        return self._state.fee_collector

    @property
    def default_fee_rate(self) -> int:
        return self._state.default_fee_rate

    def get_escrow(self, escrow_id: int) -> EscrowRecord:
        """Return a copy of the canonical record."""
        return copy.deepcopy(self._get(escrow_id))

    def escrow_count(self) -> int:
        return self._state.next_escrow_id

    def is_arbitrator(self, address: str) -> bool:
        return address in self._state.access.registry

    def collected_fees(self, asset: Asset | str) -> int:
        if isinstance(asset, str):
            asset = asset_from_address(asset)
        return self._state.collected_fees.get(asset.key, 0)

    # ------------------------------------------------------------------
    # Escrow lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        *,
        caller: str,
        provider: str,
        asset: Asset | str,
        amount: int,
        arbitrator: str = ZERO_ADDRESS,
        deadline: int = 0,
        description: str = "",
        value: int = 0,
    ) -> int:
        """Open a new escrow in CREATED status and return its id."""
        receipt = self._submit(
            caller,
            value,
            lambda: self._create(caller, provider, asset, amount, arbitrator, deadline, description),
        )
        return receipt.return_value

    def fund(self, escrow_id: int, *, caller: str, value: int = 0) -> TransactionReceipt:
        """Deposit the escrow amount. Native escrows pay ``value``; token escrows are pulled."""
        return self._submit(caller, value, lambda: self._fund(escrow_id, caller, value), payable=True)

    def release(self, escrow_id: int, *, caller: str, value: int = 0) -> TransactionReceipt:
        """Pay the provider (minus fee). Client or arbitrator only."""
        return self._submit(caller, value, lambda: self._release(escrow_id, caller))

    def refund(self, escrow_id: int, *, caller: str, value: int = 0) -> TransactionReceipt:
        """Return the full amount to the client. Arbitrator only."""
        return self._submit(caller, value, lambda: self._refund(escrow_id, caller))

    def open_dispute(self, escrow_id: int, *, caller: str, value: int = 0) -> TransactionReceipt:
        """Freeze a funded escrow pending arbitration. Client or provider only."""
        return self._submit(caller, value, lambda: self._open_dispute(escrow_id, caller))

    def resolve_dispute(
        self,
        escrow_id: int,
        favor_client: bool,
        *,
        caller: str,
        value: int = 0,
    ) -> TransactionReceipt:
        """Settle a dispute: refund if ``favor_client`` else release."""
        return self._submit(
            caller, value, lambda: self._resolve_dispute(escrow_id, favor_client, caller)
        )

    def cancel(self, escrow_id: int, *, caller: str, value: int = 0) -> TransactionReceipt:
        """Cancel an unfunded escrow. Client only."""
        return self._submit(caller, value, lambda: self._cancel(escrow_id, caller))

    # ------------------------------------------------------------------
    # Owner administration
    # ------------------------------------------------------------------

    def add_arbitrator(self, arbitrator: str, *, caller: str) -> TransactionReceipt:
        return self._submit(caller, 0, lambda: self._set_arbitrator(arbitrator, caller, True))

    def remove_arbitrator(self, arbitrator: str, *, caller: str) -> TransactionReceipt:
        return self._submit(caller, 0, lambda: self._set_arbitrator(arbitrator, caller, False))

    def set_default_fee(self, fee_rate: int, *, caller: str) -> TransactionReceipt:
        """Change the fee applied to escrows created from now on."""
        return self._submit(caller, 0, lambda: self._set_default_fee(fee_rate, caller))

    def set_fee_collector(self, fee_collector: str, *, caller: str) -> TransactionReceipt:
        return self._submit(caller, 0, lambda: self._set_fee_collector(fee_collector, caller))

    def emergency_withdraw(self, asset: Asset | str, amount: int, *, caller: str) -> TransactionReceipt:
        """Move a stuck balance to the owner. Operator recovery only; irreversible."""
        return self._submit(caller, 0, lambda: self._emergency_withdraw(asset, amount, caller))

    # ------------------------------------------------------------------
    # Transaction bodies
    # ------------------------------------------------------------------

    def _create(
        self,
        caller: str,
        provider: str,
        asset: Asset | str,
        amount: int,
        arbitrator: str,
        deadline: int,
        description: str,
    ) -> int:
        client = normalize_address(caller)
        provider = normalize_address(provider)
        arbitrator = normalize_address(arbitrator)
        if is_zero_address(provider):
            raise InvalidPartyError("Invalid provider address")
        if provider == client:
            raise InvalidPartyError("Client and provider must be different")
        if amount <= 0:
            raise InvalidAmountError(amount)
        check_uint256(amount)
        now = self._chain.block_timestamp
        if deadline and deadline <= now:
            raise InvalidDeadlineError(deadline, now)
        check_uint256(deadline)
        if isinstance(asset, str):
            asset = asset_from_address(asset)

        escrow_id = self._state.next_escrow_id
        self._state.next_escrow_id += 1
        self._state.escrows[escrow_id] = EscrowRecord(
            escrow_id=escrow_id,
            client=client,
            provider=provider,
            arbitrator=arbitrator,
            asset=asset,
            amount=amount,
            fee_rate=self._state.default_fee_rate,
            status=EscrowStatus.CREATED,
            created_at=now,
            deadline=deadline,
            description=description,
        )
        self._emit(
            LedgerEventType.ESCROW_CREATED,
            escrowId=escrow_id,
            client=client,
            provider=provider,
            token=asset.address,
            amount=amount,
            deadline=deadline,
        )
        logger.info(
            "ledger.escrow_created",
            escrow_id=escrow_id,
            client=client,
            provider=provider,
            asset=asset.key,
            amount=amount,
        )
        return escrow_id

    def _fund(self, escrow_id: int, caller: str, value: int) -> None:
        with self._non_reentrant("fund"):
            record = self._get(escrow_id)
            self._state.access.require_client(record, caller)
            record.status = guard_transition(escrow_id, record.status, "fund_escrow")
            self._handler(record.asset).transfer_in(record.client, record.amount, value)
            self._emit(
                LedgerEventType.ESCROW_FUNDED,
                escrowId=escrow_id,
                funder=record.client,
                amount=record.amount,
            )
        logger.info("ledger.escrow_funded", escrow_id=escrow_id, amount=record.amount)

    def _release(self, escrow_id: int, caller: str) -> None:
        with self._non_reentrant("release"):
            record = self._get(escrow_id)
            self._state.access.require_releaser(record, caller)
            guard_transition(escrow_id, record.status, "release_funds")
            self._settle_release(record)

    def _refund(self, escrow_id: int, caller: str) -> None:
        with self._non_reentrant("refund"):
            record = self._get(escrow_id)
            self._state.access.require_arbitrator(record, caller)
            guard_transition(escrow_id, record.status, "refund_client")
            self._settle_refund(record)

    def _open_dispute(self, escrow_id: int, caller: str) -> None:
        record = self._get(escrow_id)
        self._state.access.require_party(record, caller)
        record.status = guard_transition(escrow_id, record.status, "open_dispute")
        self._emit(
            LedgerEventType.DISPUTE_OPENED,
            escrowId=escrow_id,
            opener=caller.lower(),
            timestamp=self._chain.block_timestamp,
        )
        logger.info("ledger.dispute_opened", escrow_id=escrow_id, opener=caller.lower())

    def _resolve_dispute(self, escrow_id: int, favor_client: bool, caller: str) -> None:
        with self._non_reentrant("resolve_dispute"):
            record = self._get(escrow_id)
            self._state.access.require_arbitrator(record, caller)
            event_name = "resolve_for_client" if favor_client else "resolve_for_provider"
            guard_transition(escrow_id, record.status, event_name)
            self._emit(
                LedgerEventType.DISPUTE_RESOLVED,
                escrowId=escrow_id,
                arbitrator=caller.lower(),
                inFavorOfClient=favor_client,
            )
            logger.info(
                "ledger.dispute_resolved",
                escrow_id=escrow_id,
                arbitrator=caller.lower(),
                favor_client=favor_client,
            )
            if favor_client:
                self._settle_refund(record)
            else:
                self._settle_release(record)

    def _cancel(self, escrow_id: int, caller: str) -> None:
        record = self._get(escrow_id)
        self._state.access.require_client(record, caller)
        record.status = guard_transition(escrow_id, record.status, "cancel_escrow")
        self._emit(LedgerEventType.ESCROW_CANCELLED, escrowId=escrow_id, client=record.client)
        logger.info("ledger.escrow_cancelled", escrow_id=escrow_id)

    # --- settlement helpers shared by release/refund/resolve_dispute ---

    def _settle_release(self, record: EscrowRecord) -> None:
        split = compute_fee_split(record.amount, record.fee_rate)
        record.status = EscrowStatus.RELEASED
        record.fee_paid = split.fee_amount

        handler = self._handler(record.asset)
        for payout in release_payouts(record, self._state.fee_collector):
            handler.transfer_out(payout.recipient, payout.amount)

        key = record.asset.key
        self._state.collected_fees[key] = check_uint256(
            self._state.collected_fees[key] + split.fee_amount
        )
        self._emit(
            LedgerEventType.ESCROW_RELEASED,
            escrowId=record.escrow_id,
            provider=record.provider,
            amount=split.provider_amount,
            fee=split.fee_amount,
        )
        logger.info(
            "ledger.escrow_released",
            escrow_id=record.escrow_id,
            provider_amount=split.provider_amount,
            fee=split.fee_amount,
        )

    def _settle_refund(self, record: EscrowRecord) -> None:
        record.status = EscrowStatus.REFUNDED

        handler = self._handler(record.asset)
        for payout in refund_payouts(record):
            handler.transfer_out(payout.recipient, payout.amount)

        self._emit(
            LedgerEventType.ESCROW_REFUNDED,
            escrowId=record.escrow_id,
            client=record.client,
            amount=record.amount,
        )
        logger.info("ledger.escrow_refunded", escrow_id=record.escrow_id, amount=record.amount)

    # --- administration bodies ---

    def _set_arbitrator(self, arbitrator: str, caller: str, authorized: bool) -> None:
        self._state.access.require_owner(caller)
        arbitrator = normalize_address(arbitrator)
        if is_zero_address(arbitrator):
            raise InvalidPartyError("Invalid arbitrator address")
        registry = self._state.access.registry
        if authorized:
            registry.add(arbitrator)
            self._emit(LedgerEventType.ARBITRATOR_ADDED, arbitrator=arbitrator)
        else:
            registry.remove(arbitrator)
            self._emit(LedgerEventType.ARBITRATOR_REMOVED, arbitrator=arbitrator)
        logger.info("ledger.arbitrator_updated", arbitrator=arbitrator, authorized=authorized)

    def _set_default_fee(self, fee_rate: int, caller: str) -> None:
        self._state.access.require_owner(caller)
        self._state.default_fee_rate = validate_fee_rate(fee_rate, self.max_fee_rate)
        self._emit(LedgerEventType.DEFAULT_FEE_UPDATED, newFee=fee_rate)
        logger.info("ledger.default_fee_updated", fee_rate=fee_rate)

    def _set_fee_collector(self, fee_collector: str, caller: str) -> None:
        self._state.access.require_owner(caller)
        fee_collector = normalize_address(fee_collector)
        if is_zero_address(fee_collector):
            raise InvalidPartyError("Invalid fee collector address")
        self._state.fee_collector = fee_collector
        self._emit(LedgerEventType.FEE_COLLECTOR_UPDATED, newCollector=fee_collector)
        logger.info("ledger.fee_collector_updated", fee_collector=fee_collector)

    def _emergency_withdraw(self, asset: Asset | str, amount: int, caller: str) -> None:
        with self._non_reentrant("emergency_withdraw"):
            self._state.access.require_owner(caller)
            if amount <= 0:
                raise InvalidAmountError(amount)
            check_uint256(amount)
            if isinstance(asset, str):
                asset = asset_from_address(asset)
            self._handler(asset).transfer_out(self.owner, amount)
            self._emit(LedgerEventType.EMERGENCY_WITHDRAWAL, token=asset.address, amount=amount)
        logger.warning(
            "ledger.emergency_withdrawal",
            asset=asset.key,
            amount=amount,
            owner=self.owner,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _submit(
        self,
        caller: str,
        value: int,
        body: Callable[[], Any],
        *,
        payable: bool = False,
    ) -> TransactionReceipt:
        def call() -> Any:
            if value and not payable:
                raise UnexpectedValueError(value)
            return body()

        return self._chain.transact(caller, self.address, call, value=value)

    @contextmanager
    def _non_reentrant(self, operation: str) -> Iterator[None]:
        if self._entered:
            raise ReentrantCallError(operation)
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

    def _get(self, escrow_id: int) -> EscrowRecord:
        try:
            return self._state.escrows[escrow_id]
        except KeyError:
            raise EscrowNotFoundError(escrow_id) from None

    def _handler(self, asset: Asset) -> AssetHandler:
        return handler_for(asset, self._chain.bank, self.address)

    def _emit(self, event: LedgerEventType, **args: Any) -> None:
        self._chain.emit(self.address, event, args)

    @staticmethod
    def _derive_address(chain_id: int, owner: str, nonce: int) -> str:
        seed = f"escrow:{chain_id}:{owner.lower()}:{nonce}"
        return "0x" + hashlib.sha256(seed.encode()).hexdigest()[:40]