"""Access/role policy for ledger operations.

Two independent facts authorize arbitrator-gated operations: membership in
the owner-controlled ArbitratorRegistry, or being the arbitrator recorded on
the escrow at creation. Either suffices; assignment needs no acceptance step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chain_escrow.domain.exceptions import UnauthorizedError
from chain_escrow.domain.models import is_zero_address, normalize_address

if TYPE_CHECKING:
    from chain_escrow.domain.models import EscrowRecord


@dataclass
class ArbitratorRegistry:
    """Globally authorized arbitrators. A plain set toggle with no expiry."""

    members: set[str] = field(default_factory=set)

    def add(self, address: str) -> bool:
        """Add an arbitrator; returns False if already present."""
        address = normalize_address(address)
        if address in self.members:
            return False
        self.members.add(address)
        return True

    def remove(self, address: str) -> bool:
        """Remove an arbitrator; returns False if absent."""
        address = normalize_address(address)
        if address not in self.members:
            return False
        self.members.remove(address)
        return True

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self.members


@dataclass
class AccessPolicy:
    """Role checks. Every ``require_*`` raises UnauthorizedError on failure."""

    owner: str
    registry: ArbitratorRegistry = field(default_factory=ArbitratorRegistry)

    def __post_init__(self) -> None:
        self.owner = normalize_address(self.owner)

    # --- predicates ---

    def is_owner(self, caller: str) -> bool:
        return caller.lower() == self.owner

    def is_authorized_arbitrator(self, record: EscrowRecord, caller: str) -> bool:
        caller = caller.lower()
        if caller in self.registry:
            return True
        return not is_zero_address(record.arbitrator) and caller == record.arbitrator

    # --- guards ---

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise UnauthorizedError(caller, "owner")

    def require_client(self, record: EscrowRecord, caller: str) -> None:
        if caller.lower() != record.client:
            raise UnauthorizedError(caller, "client")

    def require_party(self, record: EscrowRecord, caller: str) -> None:
        if caller.lower() not in record.participants:
            raise UnauthorizedError(caller, "client or provider")

    def require_releaser(self, record: EscrowRecord, caller: str) -> None:
        if caller.lower() != record.client and not self.is_authorized_arbitrator(record, caller):
            raise UnauthorizedError(caller, "client or arbitrator")

    def require_arbitrator(self, record: EscrowRecord, caller: str) -> None:
        if not self.is_authorized_arbitrator(record, caller):
            raise UnauthorizedError(caller, "arbitrator")
