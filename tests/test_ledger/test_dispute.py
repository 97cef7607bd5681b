"""Tests for opening and resolving disputes on the ledger."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from chain_escrow.domain.enums import EscrowStatus, LedgerEventType
from chain_escrow.domain.exceptions import InvalidStateError, TransferFailedError, UnauthorizedError
from parties import ARBITRATOR, CLIENT, FEE_COLLECTOR, OUTSIDER, PROVIDER

if TYPE_CHECKING:
    from collections.abc import Callable

    from chain_escrow.ledger.chain import Chain
    from chain_escrow.ledger.contract import EscrowLedger


def _balances(chain: Chain) -> tuple[int, int, int]:
    bank = chain.bank
    return (
        bank.native_balance(CLIENT),
        bank.native_balance(PROVIDER),
        bank.native_balance(FEE_COLLECTOR),
    )


def _delta(before: tuple[int, int, int], after: tuple[int, int, int]) -> tuple[int, ...]:
    return tuple(a - b for a, b in zip(after, before, strict=True))


class TestOpenDispute:
    @pytest.mark.parametrize("opener", [CLIENT, PROVIDER])
    def test_party_can_open(
        self, ledger: EscrowLedger, make_escrow: Callable[..., int], opener: str
    ) -> None:
        escrow_id = make_escrow(1_000, fund=True)
        receipt = ledger.open_dispute(escrow_id, caller=opener)

        assert ledger.get_escrow(escrow_id).status is EscrowStatus.DISPUTED
        [log] = receipt.logs
        assert log.event is LedgerEventType.DISPUTE_OPENED
        assert log.args == {"escrowId": escrow_id, "opener": opener, "timestamp": receipt.timestamp}

    def test_outsider_cannot_open(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR, fund=True)
        for caller in (OUTSIDER, ARBITRATOR):
            with pytest.raises(UnauthorizedError):
                ledger.open_dispute(escrow_id, caller=caller)

    def test_unfunded_cannot_be_disputed(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(1_000)
        with pytest.raises(InvalidStateError):
            ledger.open_dispute(escrow_id, caller=CLIENT)
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.CREATED

    def test_disputed_escrow_cannot_be_released_by_client(
        self, ledger: EscrowLedger, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000, fund=True)
        ledger.open_dispute(escrow_id, caller=PROVIDER)
        with pytest.raises(InvalidStateError):
            ledger.release(escrow_id, caller=CLIENT)


class TestResolveDispute:
    def test_favor_client_matches_refund(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        disputed = make_escrow(1_000_000, arbitrator=ARBITRATOR, fund=True)
        direct = make_escrow(1_000_000, arbitrator=ARBITRATOR, fund=True)
        ledger.open_dispute(disputed, caller=CLIENT)

        before = _balances(chain)
        receipt = ledger.resolve_dispute(disputed, True, caller=ARBITRATOR)
        resolved_delta = _delta(before, _balances(chain))

        before = _balances(chain)
        ledger.refund(direct, caller=ARBITRATOR)
        refund_delta = _delta(before, _balances(chain))

        assert resolved_delta == refund_delta == (1_000_000, 0, 0)
        assert ledger.get_escrow(disputed).status is EscrowStatus.REFUNDED
        assert [log.event for log in receipt.logs] == [
            LedgerEventType.DISPUTE_RESOLVED,
            LedgerEventType.ESCROW_REFUNDED,
        ]
        assert receipt.logs[0].args == {
            "escrowId": disputed,
            "arbitrator": ARBITRATOR,
            "inFavorOfClient": True,
        }

    def test_favor_provider_matches_release(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        disputed = make_escrow(1_000_000, arbitrator=ARBITRATOR, fund=True)
        direct = make_escrow(1_000_000, arbitrator=ARBITRATOR, fund=True)
        ledger.open_dispute(disputed, caller=PROVIDER)

        before = _balances(chain)
        receipt = ledger.resolve_dispute(disputed, False, caller=ARBITRATOR)
        resolved_delta = _delta(before, _balances(chain))

        before = _balances(chain)
        ledger.release(direct, caller=ARBITRATOR)
        release_delta = _delta(before, _balances(chain))

        assert resolved_delta == release_delta == (0, 975_000, 25_000)
        assert ledger.get_escrow(disputed).fee_paid == 25_000
        assert [log.event for log in receipt.logs] == [
            LedgerEventType.DISPUTE_RESOLVED,
            LedgerEventType.ESCROW_RELEASED,
        ]
        assert receipt.logs[0].log_index == 0
        assert receipt.logs[1].log_index == 1

    def test_registry_arbitrator_resolves_unassigned_escrow(
        self, ledger: EscrowLedger, make_escrow: Callable[..., int]
    ) -> None:
        ledger.add_arbitrator(ARBITRATOR, caller=ledger.owner)
        escrow_id = make_escrow(1_000, fund=True)
        ledger.open_dispute(escrow_id, caller=CLIENT)
        ledger.resolve_dispute(escrow_id, True, caller=ARBITRATOR)
        assert ledger.get_escrow(escrow_id).status is EscrowStatus.REFUNDED

    @pytest.mark.parametrize("caller", [CLIENT, PROVIDER, OUTSIDER])
    def test_only_arbitrator_resolves(
        self, ledger: EscrowLedger, make_escrow: Callable[..., int], caller: str
    ) -> None:
        escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR, fund=True)
        ledger.open_dispute(escrow_id, caller=CLIENT)
        with pytest.raises(UnauthorizedError):
            ledger.resolve_dispute(escrow_id, False, caller=caller)

    def test_requires_open_dispute(self, ledger: EscrowLedger, make_escrow: Callable[..., int]) -> None:
        escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR, fund=True)
        with pytest.raises(InvalidStateError):
            ledger.resolve_dispute(escrow_id, True, caller=ARBITRATOR)

    def test_failed_payout_keeps_dispute_open(
        self, ledger: EscrowLedger, chain: Chain, make_escrow: Callable[..., int]
    ) -> None:
        escrow_id = make_escrow(1_000, arbitrator=ARBITRATOR, fund=True)
        ledger.open_dispute(escrow_id, caller=CLIENT)
        height = chain.height
        chain.bank.reject_transfers(CLIENT)

        with pytest.raises(TransferFailedError):
            ledger.resolve_dispute(escrow_id, True, caller=ARBITRATOR)

        assert ledger.get_escrow(escrow_id).status is EscrowStatus.DISPUTED
        assert chain.height == height
        assert chain.get_logs(height, height)[-1].event is LedgerEventType.DISPUTE_OPENED
