"""Domain exceptions for the escrow ledger and indexer.

These exceptions are framework-agnostic and represent business rule violations.
Ledger calls raise them synchronously, before any state survives: the
enclosing transaction rolls back on every EscrowError. The API layer's
middleware translates them to HTTP responses.
"""


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation Errors ---


class ValidationError(EscrowError):
    """Caller input rejected before any state mutation."""


class InvalidPartyError(ValidationError):
    """Raised when a participant address is unset or duplicates another role."""

    def __init__(self, message: str = "Invalid party address") -> None:
        super().__init__(message=message, code="INVALID_PARTY")


class InvalidAmountError(ValidationError):
    """Raised when an escrow amount is not strictly positive."""

    def __init__(self, amount: int) -> None:
        super().__init__(
            message=f"Amount must be greater than 0, got {amount}",
            code="INVALID_AMOUNT",
        )
        self.amount = amount


class InvalidDeadlineError(ValidationError):
    """Raised when a supplied deadline is not strictly in the future."""

    def __init__(self, deadline: int, now: int) -> None:
        super().__init__(
            message=f"Deadline {deadline} must be after current time {now}",
            code="INVALID_DEADLINE",
        )
        self.deadline = deadline
        self.now = now


class FeeTooHighError(ValidationError):
    """Raised when a fee rate exceeds the configured maximum."""

    def __init__(self, fee_rate: int, max_fee_rate: int) -> None:
        super().__init__(
            message=f"Fee {fee_rate} bp exceeds maximum {max_fee_rate} bp",
            code="FEE_TOO_HIGH",
        )
        self.fee_rate = fee_rate
        self.max_fee_rate = max_fee_rate


class AmountMismatchError(ValidationError):
    """Raised when native value sent with fund() differs from the escrow amount."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            message=f"Incorrect native amount: expected {expected}, received {received}",
            code="AMOUNT_MISMATCH",
        )
        self.expected = expected
        self.received = received


class UnexpectedValueError(ValidationError):
    """Raised when native value accompanies a call that must not carry any."""

    def __init__(self, value: int) -> None:
        super().__init__(
            message=f"Native value not accepted for token escrow (sent {value})",
            code="UNEXPECTED_VALUE",
        )
        self.value = value


class ArithmeticOverflowError(ValidationError):
    """Raised when an amount leaves the unsigned 256-bit range."""

    def __init__(self, value: int) -> None:
        super().__init__(
            message=f"Value out of uint256 range: {value}",
            code="ARITHMETIC_OVERFLOW",
        )
        self.value = value


# --- Authorization / State Errors ---


class UnauthorizedError(EscrowError):
    """Raised when the caller does not hold the role an operation requires."""

    def __init__(self, caller: str, required_role: str) -> None:
        super().__init__(
            message=f"{caller} is not authorized: requires {required_role}",
            code="UNAUTHORIZED",
        )
        self.caller = caller
        self.required_role = required_role


class InvalidStateError(EscrowError):
    """Raised when an operation is invoked against a record in the wrong status.

    Example: release() on a CREATED (unfunded) escrow.
    """

    def __init__(self, escrow_id: int, current_status: str, operation: str) -> None:
        super().__init__(
            message=f"Invalid escrow status for {operation} on escrow {escrow_id}: {current_status}",
            code="INVALID_STATE",
        )
        self.escrow_id = escrow_id
        self.current_status = current_status
        self.operation = operation


class EscrowNotFoundError(EscrowError):
    """Raised when an escrow id does not exist on the ledger."""

    def __init__(self, escrow_id: int) -> None:
        super().__init__(
            message=f"Escrow does not exist: {escrow_id}",
            code="ESCROW_NOT_FOUND",
        )
        self.escrow_id = escrow_id


class ReentrantCallError(EscrowError):
    """Raised when a guarded ledger operation is re-entered mid-transfer."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            message=f"Reentrant call rejected: {operation}",
            code="REENTRANT_CALL",
        )
        self.operation = operation


# --- Transfer Errors ---


class TransferError(EscrowError):
    """Base exception for failures of the underlying asset movement."""


class TransferFailedError(TransferError):
    """Raised when a native or token transfer cannot be completed."""

    def __init__(self, asset: str, recipient: str, amount: int, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(
            message=f"Transfer of {amount} {asset} to {recipient} failed{detail}",
            code="TRANSFER_FAILED",
        )
        self.asset = asset
        self.recipient = recipient
        self.amount = amount


class InsufficientAllowanceError(TransferError):
    """Raised when a token pull exceeds what the owner approved."""

    def __init__(self, token: str, owner: str, required: int, allowance: int) -> None:
        super().__init__(
            message=(
                f"Insufficient allowance on {token} from {owner}: "
                f"required {required}, approved {allowance}"
            ),
            code="INSUFFICIENT_ALLOWANCE",
        )
        self.token = token
        self.owner = owner
        self.required = required
        self.allowance = allowance


# --- Indexer / Replica Errors ---


class IndexerError(EscrowError):
    """Base exception for the off-chain synchronization layer."""


class LedgerUnavailableError(IndexerError):
    """Raised when a ledger read times out or the source is temporarily down.

    Transient: the indexer logs it and retries on the next cycle.
    """

    def __init__(self, chain_id: int, operation: str, reason: str = "") -> None:
        super().__init__(
            message=f"Ledger source for chain {chain_id} unavailable during {operation}: {reason}",
            code="LEDGER_UNAVAILABLE",
        )
        self.chain_id = chain_id
        self.operation = operation


class ReplicaNotFoundError(IndexerError):
    """Raised when a replica record does not exist."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(
            message=f"{kind} not found: {key}",
            code=f"{kind.upper()}_NOT_FOUND",
        )
        self.kind = kind
        self.key = key
