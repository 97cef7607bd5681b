"""Domain enumerations for the escrow ledger and its replica.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.IntEnum):
    """Lifecycle states of an escrow record.

    The integer values are the on-chain encoding and are stored as-is in the
    replica. Transitions are enforced by EscrowStateMachine; see
    domain/state_machine.py for the transition table.
    """

    CREATED = 0
    FUNDED = 1
    DISPUTED = 2
    RELEASED = 3
    REFUNDED = 4
    CANCELLED = 5

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED}
)


class LedgerEventType(enum.StrEnum):
    """Log events emitted by the escrow ledger.

    Every state-changing call emits exactly one of the escrow events below
    (resolve_dispute emits DisputeResolved followed by the settlement event).
    Values match the contract's event names.
    """

    # Escrow lifecycle
    ESCROW_CREATED = "EscrowCreated"
    ESCROW_FUNDED = "EscrowFunded"
    ESCROW_RELEASED = "EscrowReleased"
    ESCROW_REFUNDED = "EscrowRefunded"
    DISPUTE_OPENED = "DisputeOpened"
    DISPUTE_RESOLVED = "DisputeResolved"
    ESCROW_CANCELLED = "EscrowCancelled"

    # Platform administration
    ARBITRATOR_ADDED = "ArbitratorAdded"
    ARBITRATOR_REMOVED = "ArbitratorRemoved"
    DEFAULT_FEE_UPDATED = "DefaultFeeUpdated"
    FEE_COLLECTOR_UPDATED = "FeeCollectorUpdated"
    EMERGENCY_WITHDRAWAL = "EmergencyWithdrawal"

    @property
    def is_escrow_event(self) -> bool:
        return self in ESCROW_EVENTS


ESCROW_EVENTS = frozenset(
    {
        LedgerEventType.ESCROW_CREATED,
        LedgerEventType.ESCROW_FUNDED,
        LedgerEventType.ESCROW_RELEASED,
        LedgerEventType.ESCROW_REFUNDED,
        LedgerEventType.DISPUTE_OPENED,
        LedgerEventType.DISPUTE_RESOLVED,
        LedgerEventType.ESCROW_CANCELLED,
    }
)


class NotificationKind(enum.StrEnum):
    """Kinds of notifications pushed to participants by the indexer."""

    ESCROW_CREATED = "ESCROW_CREATED"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    ESCROW_CANCELLED = "ESCROW_CANCELLED"


NOTIFICATION_FOR_EVENT: dict[LedgerEventType, NotificationKind] = {
    LedgerEventType.ESCROW_CREATED: NotificationKind.ESCROW_CREATED,
    LedgerEventType.ESCROW_FUNDED: NotificationKind.ESCROW_FUNDED,
    LedgerEventType.ESCROW_RELEASED: NotificationKind.ESCROW_RELEASED,
    LedgerEventType.ESCROW_REFUNDED: NotificationKind.ESCROW_REFUNDED,
    LedgerEventType.DISPUTE_OPENED: NotificationKind.DISPUTE_OPENED,
    LedgerEventType.DISPUTE_RESOLVED: NotificationKind.DISPUTE_RESOLVED,
    LedgerEventType.ESCROW_CANCELLED: NotificationKind.ESCROW_CANCELLED,
}


class DisputeStatus(enum.StrEnum):
    """Replica-side status of a dispute record."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
