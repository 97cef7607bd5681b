"""Tests for domain enumerations."""

from __future__ import annotations

from chain_escrow.domain.enums import (
    NOTIFICATION_FOR_EVENT,
    EscrowStatus,
    LedgerEventType,
    NotificationKind,
)


class TestEscrowStatus:
    def test_wire_encoding(self) -> None:
        assert [s.value for s in EscrowStatus] == [0, 1, 2, 3, 4, 5]
        assert EscrowStatus(3) is EscrowStatus.RELEASED

    def test_terminal_statuses(self) -> None:
        terminal = {s for s in EscrowStatus if s.is_terminal}
        assert terminal == {EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED}


class TestLedgerEventType:
    def test_values_match_contract_event_names(self) -> None:
        assert LedgerEventType.ESCROW_CREATED == "EscrowCreated"
        assert LedgerEventType.DISPUTE_RESOLVED == "DisputeResolved"

    def test_escrow_events(self) -> None:
        escrow_events = {e for e in LedgerEventType if e.is_escrow_event}
        assert len(escrow_events) == 7
        assert LedgerEventType.ARBITRATOR_ADDED not in escrow_events
        assert LedgerEventType.EMERGENCY_WITHDRAWAL not in escrow_events


class TestNotificationKind:
    def test_every_escrow_event_has_a_notification(self) -> None:
        escrow_events = {e for e in LedgerEventType if e.is_escrow_event}
        assert set(NOTIFICATION_FOR_EVENT) == escrow_events
        assert set(NOTIFICATION_FOR_EVENT.values()) == set(NotificationKind)
