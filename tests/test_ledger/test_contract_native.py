"""Tests for the escrow ledger with native-currency escrows.

These tests verify that:
    1. Creation validates its inputs and consumes ids only on success.
    2. Funding requires the exact amount, from the client.
    3. Release pays provider and fee collector; refund returns the principal.
    4. Every rejected call leaves balances, records and the chain untouched.
    5. Terminal records admit no further operations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from chain_escrow.domain.enums import EscrowStatus, LedgerEventType
from chain_escrow.domain.exceptions import (
    AmountMismatchError,
    ArithmeticOverflowError,
    EscrowNotFoundError,
    InvalidAmountError,
    InvalidDeadlineError,
    InvalidPartyError,
    InvalidStateError,
    TransferFailedError,
    UnauthorizedError,
    UnexpectedValueError,
)
from chain_escrow.domain.models import NATIVE, UINT256_MAX, ZERO_ADDRESS
from parties import ARBITRATOR, CLIENT, CLIENT_FUNDS, FEE_COLLECTOR, GENESIS_TIME, OUTSIDER, PROVIDER

if TYPE_CHECKING:
    from collections.abc import Callable

    from chain_escrow.ledger.chain import Chain
    from chain_escrow.ledger.contract import EscrowLedger


class TestCreate:
    def test_ids_are_sequential_from_zero(self, make_escrow: Callable[..., int]) -> None:
        assert make_escrow() == 0
        assert make_escrow() == 1

    def test_record_fields(self, ledger: EscrowLedger) -> None:
        escrow_id = ledger.create(
            caller=CLIENT,
            provider=PROVIDER,
            asset=NATIVE,
            amount=1_000_000,
            arbitrator=ARBITRATOR,
            deadline=GENESIS_TIME + 3600,
            description="logo design",
        )
        record = ledger.get_escrow(escrow_id)
        assert record.client == CLIENT
        assert record.provider == PROVIDER
        assert record.arbitrator == ARBITRATOR
        assert record.asset is NATIVE
        assert record.amount == 1_000_000
        assert record.fee_rate == 250
        assert record.status is EscrowStatus.CREATED
        assert record.created_at == GENESIS_TIME + 1
        assert record.deadline == GENESIS_TIME + 3600
        assert record.description == "logo design"
        assert record.fee_paid == 0
        assert ledger.escrow_count() == 1

    def test_emits_escrow_created(self, ledger: EscrowLedger, chain: Chain) -> None:
        escrow_id = ledger.create(caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=500)
        [log] = chain.get_logs(chain.height, chain.height)
        assert log.event is LedgerEventType.ESCROW_CREATED
        assert log.address == ledger.address
        assert log.args == {
            "escrowId": escrow_id,
            "client": CLIENT,
            "provider": PROVIDER,
            "token": ZERO_ADDRESS,
            "amount": 500,
            "deadline": 0,
        }

    def test_zero_provider_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(InvalidPartyError, match="Invalid provider address"):
            ledger.create(caller=CLIENT, provider=ZERO_ADDRESS, asset=NATIVE, amount=1)

    def test_provider_equal_to_client_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(InvalidPartyError, match="Client and provider must be different"):
            ledger.create(caller=CLIENT, provider=CLIENT.upper().replace("0X", "0x"), asset=NATIVE, amount=1)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_rejected(self, ledger: EscrowLedger, amount: int) -> None:
        with pytest.raises(InvalidAmountError):
            ledger.create(caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=amount)

    def test_amount_beyond_uint256_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(ArithmeticOverflowError):
            ledger.create(caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=UINT256_MAX + 1)

    def test_deadline_must_be_in_the_future(self, ledger: EscrowLedger) -> None:
        # The creating transaction is stamped GENESIS_TIME + 1.
        with pytest.raises(InvalidDeadlineError):
            ledger.create(
                caller=CLIENT,
                provider=PROVIDER,
                asset=NATIVE,
                amount=1,
                deadline=GENESIS_TIME + 1,
            )

    def test_negative_deadline_is_in_the_past(self, ledger: EscrowLedger) -> None:
        with pytest.raises(InvalidDeadlineError):
            ledger.create(caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=1, deadline=-1)

    def test_deadline_beyond_uint256_rejected(self, ledger: EscrowLedger) -> None:
        with pytest.raises(ArithmeticOverflowError):
            ledger.create(
                caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=1, deadline=UINT256_MAX + 1
            )

    def test_rejected_create_leaves_no_trace(self, ledger: EscrowLedger, chain: Chain) -> None:
        height = chain.height
        with pytest.raises(InvalidPartyError):
            ledger.create(caller=CLIENT, provider=CLIENT, asset=NATIVE, amount=1)
        assert ledger.escrow_count() == 0
        assert chain.height == height
        assert ledger.create(caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=1) == 0

    def test_value_not_accepted(self, ledger: EscrowLedger, chain: Chain) -> None:
        with pytest.raises(UnexpectedValueError):
            ledger.create(caller=CLIENT, provider=PROVIDER, asset=NATIVE, amount=1, value=1)
        assert chain.bank.native_balance(CLIENT) == CLIENT_FUNDS

    def test_unknown_escrow(self, ledger: EscrowLedger) -> None:
        with pytest.raises(EscrowNotFoundError):
            ledger.get_escrow(42)

    def test_get_escrow_returns_a_copy(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow()
        ledger.get_escrow(escrow_id).status = EscrowStatus.RELEASED
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.CREATED


class TestFund:
    def test_exact_amount_moves_into_custody(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000_000)
        receipt = ledger.fund(escrow_id, caller=CLIENT, value=1_000_000)

        assert ledger.get_escrow(escrow_id).status is EscrowStatus.FUNDED
        assert chain.bank.native_balance(ledger.address) == 1_000_000
        assert chain.bank.native_balance(CLIENT) == CLIENT_FUNDS - 1_000_000
        [log] = receipt.logs
        assert log.event is LedgerEventType.ESCROW_FUNDED
        assert log.args == {"escrowId": escrow_id, "funder": CLIENT, "amount": 1_000_000}

    @pytest.mark.parametrize("value", [999_999, 1_000_001, 0])
    def test_mismatched_value_rejected(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int], value: int
    ) -> None:
        escrow_id = make_escrow(1_000_000)
        with pytest.raises(AmountMismatchError):
            ledger.fund(escrow_id, caller=CLIENT, value=value)

        assert ledger.get_escrow(escrow_id).status is EscrowStatus.CREATED
        assert chain.bank.native_balance(CLIENT) == CLIENT_FUNDS
        assert chain.bank.native_balance(ledger.address) == 0

    def test_only_client_can_fund(self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(100)
        chain.bank.mint_native(OUTSIDER, 100)
        with pytest.raises(UnauthorizedError):
            ledger.fund(escrow_id, caller=OUTSIDER, value=100)
        assert chain.bank.native_balance(OUTSIDER) == 100

    def test_cannot_fund_twice(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(100, fund=True)
        with pytest.raises(InvalidStateError):
            ledger.fund(escrow_id, caller=CLIENT, value=100)


class TestRelease:
    def test_release_pays_provider_and_fee(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000_000, fund=True)
        receipt = ledger.release(escrow_id, caller=CLIENT)

        record = ledger.get_escrow(escrow_id)
        assert record.status is EscrowStatus.RELEASED
        assert record.fee_paid == 25_000
        assert chain.bank.native_balance(PROVIDER) == 975_000
        assert chain.bank.native_balance(FEE_COLLECTOR) == 25_000
        assert chain.bank.native_balance(ledger.address) == 0
        assert ledger.collected_fees(NATIVE) == 25_000
        [log] = receipt.logs
        assert log.event is LedgerEventType.ESCROW_RELEASED
        assert log.args == {"escrowId": escrow_id, "provider": PROVIDER, "amount": 975_000, "fee": 25_000}

    def test_fee_rounds_down(self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(399, fund=True)
        ledger.release(escrow_id, caller=CLIENT)
        assert chain.bank.native_balance(PROVIDER) == 390
        assert chain.bank.native_balance(FEE_COLLECTOR) == 9

    def test_assigned_arbitrator_can_release(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR, fund=True)
        ledger.release(escrow_id, caller=ARBITRATOR)
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.RELEASED

    def test_registry_arbitrator_can_release(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        ledger.add_arbitrator(ARBITRATOR, caller=ledger.owner)
        escrow_id = make_escrow(1_000, fund=True)
        ledger.release(escrow_id, caller=ARBITRATOR)
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.RELEASED

    @pytest.mark.parametrize("caller", [PROVIDER, OUTSIDER])
    def test_others_cannot_release(
        self, ledger: EscrowLedger, make_escrow: Callable[..., int], caller: str
    ) -> None:
        escrow_id = make_escrow(1_000, fund=True)
        with pytest.raises(UnauthorizedError):
            ledger.release(escrow_id, caller=caller)
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.FUNDED

    def test_unfunded_cannot_release(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(1_000)
        with pytest.raises(InvalidStateError):
            ledger.release(escrow_id, caller=CLIENT)

    def test_failed_transfer_rolls_back(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000_000, fund=True)
        chain.bank.reject_transfers(PROVIDER)
        height = chain.height

        with pytest.raises(TransferFailedError):
            ledger.release(escrow_id, caller=CLIENT)

        record = ledger.get_escrow(escrow_id)
        assert record.status is EscrowStatus.FUNDED
        assert record.fee_paid == 0
        assert chain.bank.native_balance(ledger.address) == 1_000_000
        assert chain.bank.native_balance(FEE_COLLECTOR) == 0
        assert ledger.collected_fees(NATIVE) == 0
        assert chain.height == height

    def test_fee_collector_rejection_rolls_back_provider_payout(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000_000, fund=True)
        chain.bank.reject_transfers(FEE_COLLECTOR)
        with pytest.raises(TransferFailedError):
            ledger.release(escrow_id, caller=CLIENT)
        assert chain.bank.native_balance(PROVIDER) == 0
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.FUNDED

    def test_fee_rate_is_fixed_at_creation(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(10_000, fund=True)
        ledger.set_default_fee(1000, caller=ledger.owner)
        ledger.release(escrow_id, caller=CLIENT)
        assert chain.bank.native_balance(FEE_COLLECTOR) == 250


class TestRefund:
    def test_arbitrator_refund_returns_full_amount(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000_000, arbitrator=ARBITRATOR, fund=True)
        receipt = ledger.refund(escrow_id, caller=ARBITRATOR)

        assert ledger.get_escrow(escrow_id).status is EscrowStatus.REFUNDED
        assert chain.bank.native_balance(CLIENT) == CLIENT_FUNDS
        assert chain.bank.native_balance(FEE_COLLECTOR) == 0
        assert ledger.collected_fees(NATIVE) == 0
        [log] = receipt.logs
        assert log.args == {"escrowId": escrow_id, "client": CLIENT, "amount": 1_000_000}

    def test_client_cannot_refund_itself(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(1_000, fund=True)
        with pytest.raises(UnauthorizedError):
            ledger.refund(escrow_id, caller=CLIENT)


class TestCancel:
    def test_cancel_unfunded(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow()
        receipt = ledger.cancel(escrow_id, caller=CLIENT)
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.CANCELLED
        assert receipt.logs[0].event is LedgerEventType.ESCROW_CANCELLED

    def test_only_client_can_cancel(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow()
        with pytest.raises(UnauthorizedError):
            ledger.cancel(escrow_id, caller=PROVIDER)

    def test_cannot_cancel_funded(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(fund=True)
        with pytest.raises(InvalidStateError):
            ledger.cancel(escrow_id, caller=CLIENT)

    def test_value_on_cancel_rejected(self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow()
        with pytest.raises(UnexpectedValueError):
            ledger.cancel(escrow_id, caller=CLIENT, value=5)
        assert chain.bank.native_balance(CLIENT) == CLIENT_FUNDS
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.CREATED


class TestTerminalStatuses:
    @pytest.fixture(params=["released", "refunded", "cancelled"])
    def terminal_escrow(self, request: pytest.FixtureRequest, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> int:
        if request.param == "cancelled":
            escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR)
            ledger.cancel(escrow_id, caller=CLIENT)
        elif request.param == "refunded":
            escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR, fund=True)
            ledger.refund(escrow_id, caller=ARBITRATOR)
        else:
            escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR, fund=True)
            ledger.release(escrow_id, caller=CLIENT)
        return escrow_id

    @pytest.mark.parametrize(
        "operation",
        [
            lambda ledger, i: ledger.fund(i, caller=CLIENT, value=1_000),
            lambda ledger, i: ledger.release(i, caller=CLIENT),
            lambda ledger, i: ledger.refund(i, caller=ARBITRATOR),
            lambda ledger, i: ledger.open_dispute(i, caller=CLIENT),
            lambda ledger, i: ledger.resolve_dispute(i, True, caller=ARBITRATOR),
            lambda ledger, i: ledger.cancel(i, caller=CLIENT),
        ],
        ids=["fund", "release", "refund", "open_dispute", "resolve_dispute", "cancel"],
    )
    def test_no_operation_succeeds(
        self,
        ledger: EscrowLedger,
        chain: Chain,
        terminal_escrow: int,
        operation: Callable[[EscrowLedger, int], object],
    ) -> None:
        before = ledger.get_escrow(terminal_escrow)
        client_balance = chain.bank.native_balance(CLIENT)

        with pytest.raises(InvalidStateError):
            operation(ledger, terminal_escrow)

        assert ledger.get_escrow(terminal_escrow) == before
        assert chain.bank.native_balance(CLIENT) == client_balance
