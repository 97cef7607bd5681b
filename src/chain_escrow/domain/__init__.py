"""Domain layer — pure business logic with zero framework dependencies."""

from chain_escrow.domain.access import AccessPolicy, ArbitratorRegistry
from chain_escrow.domain.enums import (
    DisputeStatus,
    EscrowStatus,
    LedgerEventType,
    NotificationKind,
)
from chain_escrow.domain.exceptions import (
    EscrowError,
    EscrowNotFoundError,
    IndexerError,
    InvalidStateError,
    LedgerUnavailableError,
    TransferError,
    UnauthorizedError,
    ValidationError,
)
from chain_escrow.domain.fees import compute_fee_split, validate_fee_rate
from chain_escrow.domain.models import (
    NATIVE,
    ZERO_ADDRESS,
    Asset,
    EscrowRecord,
    LedgerLog,
    NativeAsset,
    TokenAsset,
)
from chain_escrow.domain.state_machine import (
    EscrowStateMachine,
    guard_transition,
    validate_transition,
)

__all__ = [
    "AccessPolicy",
    "ArbitratorRegistry",
    "DisputeStatus",
    "EscrowStatus",
    "LedgerEventType",
    "NotificationKind",
    "EscrowError",
    "EscrowNotFoundError",
    "IndexerError",
    "InvalidStateError",
    "LedgerUnavailableError",
    "TransferError",
    "UnauthorizedError",
    "ValidationError",
    "compute_fee_split",
    "validate_fee_rate",
    "NATIVE",
    "ZERO_ADDRESS",
    "Asset",
    "EscrowRecord",
    "LedgerLog",
    "NativeAsset",
    "TokenAsset",
    "EscrowStateMachine",
    "guard_transition",
    "validate_transition",
]
