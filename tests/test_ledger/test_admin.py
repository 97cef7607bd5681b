"""Tests for owner-only ledger administration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from chain_escrow.config import Settings
from chain_escrow.domain.enums import EscrowStatus, LedgerEventType
from chain_escrow.domain.exceptions import (
    FeeTooHighError,
    InvalidAmountError,
    InvalidPartyError,
    TransferFailedError,
    UnauthorizedError,
)
from chain_escrow.domain.models import NATIVE, ZERO_ADDRESS
from chain_escrow.ledger.contract import EscrowLedger
from parties import ARBITRATOR, CLIENT, FEE_COLLECTOR, OUTSIDER, OWNER, PROVIDER

if TYPE_CHECKING:
    from collections.abc import Callable

    from chain_escrow.ledger.chain import Chain


class TestDeployment:
    def test_zero_fee_collector_rejected(self, chain: Chain) -> None:
        with pytest.raises(InvalidPartyError, match="Invalid fee collector address"):
            EscrowLedger(chain, owner=OWNER, fee_collector=ZERO_ADDRESS)

    def test_defaults(self, ledger: EscrowLedger) -> None:
        assert ledger.owner == OWNER
        assert ledger.default_fee_rate == 250
        assert ledger.escrow_count() == 0

    def test_configured_fee_rates(self, chain: Chain) -> None:
        ledger = EscrowLedger(
            chain, owner=OWNER, fee_collector=FEE_COLLECTOR, default_fee_rate=100, max_fee_rate=500
        )
        assert ledger.default_fee_rate == 100
        with pytest.raises(FeeTooHighError):
            ledger.set_default_fee(501, caller=OWNER)

    def test_fee_rates_from_settings(self, chain: Chain) -> None:
        settings = Settings(ledger_default_fee_rate=50, ledger_max_fee_rate=200)
        ledger = EscrowLedger.from_settings(chain, OWNER, FEE_COLLECTOR, settings)
        assert ledger.default_fee_rate == 50
        assert ledger.max_fee_rate == 200
        with pytest.raises(FeeTooHighError):
            ledger.set_default_fee(201, caller=OWNER)

    def test_settings_default_above_maximum_rejected(self, chain: Chain) -> None:
        settings = Settings(ledger_default_fee_rate=300, ledger_max_fee_rate=200)
        with pytest.raises(FeeTooHighError):
            EscrowLedger.from_settings(chain, OWNER, FEE_COLLECTOR, settings)

    def test_same_owner_deploys_distinct_ledgers(self, chain: Chain, ledger: EscrowLedger) -> None:
        second = EscrowLedger(chain, owner=OWNER, fee_collector=FEE_COLLECTOR)
        assert second.address != ledger.address

        escrow_id = second.create(caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=1_000)
        second.fund(escrow_id, caller=CLIENT, value=1_000)

        assert chain.bank.native_balance(second.address) == 1_000
        assert chain.bank.native_balance(ledger.address) == 0
        assert chain.get_logs(0, chain.height, address=ledger.address) == []
        assert len(chain.get_logs(0, chain.height, address=second.address)) == 2


class TestArbitrators:
    def test_add_and_remove(self, ledger: EscrowLedger) -> None:
        added = ledger.add_arbitrator(ARBITRATOR, caller=OWNER)
        assert ledger.is_arbitrator(ARBITRATOR)
        assert added.logs[0].event is LedgerEventType.ARBITRATOR_ADDED
        assert added.logs[0].args == {"arbitrator": ARBITRATOR}

        removed = ledger.remove_arbitrator(ARBITRATOR, caller=OWNER)
        assert not ledger.is_arbitrator(ARBITRATOR)
        assert removed.logs[0].event is LedgerEventType.ARBITRATOR_REMOVED

    def test_owner_only(self, ledger: EscrowLedger) -> None:
        with pytest.raises(UnauthorizedError):
            ledger.add_arbitrator(ARBITRATOR, caller=OUTSIDER)
        assert not ledger.is_arbitrator(ARBITRATOR)

    def test_zero_address_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(InvalidPartyError):
            ledger.add_arbitrator(ZERO_ADDRESS, caller=OWNER)

    def test_removed_arbitrator_loses_authority(
        self, ledger: EscrowLedger, make_escrow: Callable[..., int]
    ) -> None:
        ledger.add_arbitrator(ARBITRATOR, caller=OWNER)
        escrow_id = make_escrow(1_000, fund=True)
        ledger.remove_arbitrator(ARBITRATOR, caller=OWNER)
        with pytest.raises(UnauthorizedError):
            ledger.refund(escrow_id, caller=ARBITRATOR)


class TestFees:
    def test_set_default_fee(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        receipt = ledger.set_default_fee(500, caller=OWNER)
        assert ledger.default_fee_rate == 500
        assert receipt.logs[0].args == {"newFee": 500}
        assert ledger.get_escrow(make_escrow()).fee_rate == 500

    def test_fee_above_maximum_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(FeeTooHighError):
            ledger.set_default_fee(1001, caller=OWNER)
        assert ledger.default_fee_rate == 250

    def test_fee_owner_only(self, ledger: EscrowLedger) -> None:
        with pytest.raises(UnauthorizedError):
            ledger.set_default_fee(0, caller=CLIENT)

    def test_set_fee_collector(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        ledger.set_fee_collector(OUTSIDER, caller=OWNER)
        escrow_id = make_escrow(1_000_000, fund=True)
        ledger.release(escrow_id, caller=CLIENT)
        assert ledger.fee_collector == OUTSIDER
        assert chain.bank.native_balance(OUTSIDER) == 25_000

    def test_zero_fee_collector_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(InvalidPartyError):
            ledger.set_fee_collector(ZERO_ADDRESS, caller=OWNER)


class TestEmergencyWithdraw:
    def test_moves_balance_to_owner(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000, fund=True)
        owner_before = chain.bank.native_balance(OWNER)

        receipt = ledger.emergency_withdraw(NATIVE, 1_000, caller=OWNER)

        assert chain.bank.native_balance(OWNER) == owner_before + 1_000
        assert chain.bank.native_balance(ledger.address) == 0
        assert receipt.logs[0].event is LedgerEventType.EMERGENCY_WITHDRAWAL
        # The record is untouched; recovery is an operator action outside the lifecycle.
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.FUNDED

    def test_owner_only(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        make_escrow(1_000, fund=True)
        with pytest.raises(UnauthorizedError):
            ledger.emergency_withdraw(NATIVE, 1_000, caller=CLIENT)

    def test_cannot_exceed_custody(self, ledger: EscrowLedger) -> None:
        with pytest.raises(TransferFailedError):
            ledger.emergency_withdraw(NATIVE, 1, caller=OWNER)

    def test_zero_amount_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(InvalidAmountError):
            ledger.emergency_withdraw(NATIVE, 0, caller=OWNER)
