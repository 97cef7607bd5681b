"""Escrow State Machine Guard.

Uses python-statemachine to enforce legal status transitions. The ledger
fires the matching event on a throwaway machine before it mutates a record,
so an illegal transition (e.g. CREATED -> RELEASED) is rejected no matter
which caller asked for it.

Transition table:
    CREATED   -> FUNDED      (fund_escrow)
    CREATED   -> CANCELLED   (cancel_escrow)
    FUNDED    -> RELEASED    (release_funds)
    FUNDED    -> DISPUTED    (open_dispute)
    FUNDED    -> REFUNDED    (refund_client)
    DISPUTED  -> REFUNDED    (refund_client | resolve_for_client)
    DISPUTED  -> RELEASED    (resolve_for_provider)

RELEASED, REFUNDED and CANCELLED are final.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from chain_escrow.domain.enums import EscrowStatus
from chain_escrow.domain.exceptions import InvalidStateError


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(EscrowStatus.FUNDED)
        sm.release_funds()
        sm.status  # EscrowStatus.RELEASED
    """

    # --- States ---
    CREATED = State("CREATED", initial=True)
    FUNDED = State("FUNDED")
    DISPUTED = State("DISPUTED")
    RELEASED = State("RELEASED", final=True)
    REFUNDED = State("REFUNDED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    # --- Events / Transitions ---

    # Client-driven, before funds move
    fund_escrow = CREATED.to(FUNDED)
    cancel_escrow = CREATED.to(CANCELLED)

    # Settlement
    release_funds = FUNDED.to(RELEASED)
    refund_client = FUNDED.to(REFUNDED) | DISPUTED.to(REFUNDED)

    # Disputes
    open_dispute = FUNDED.to(DISPUTED)
    resolve_for_client = DISPUTED.to(REFUNDED)
    resolve_for_provider = DISPUTED.to(RELEASED)

    def __init__(self, current_status: EscrowStatus | int | str = EscrowStatus.CREATED) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: An EscrowStatus, its integer value, or its name.
        """
        super().__init__(start_value=_status_name(current_status))

    @property
    def status(self) -> EscrowStatus:
        """Return the current state as an EscrowStatus."""
        return EscrowStatus[self.current_state.id]

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def _status_name(status: EscrowStatus | int | str) -> str:
    try:
        if isinstance(status, str):
            return EscrowStatus[status].name
        return EscrowStatus(status).name
    except (KeyError, ValueError) as err:
        valid = ", ".join(s.name for s in EscrowStatus)
        raise ValueError(f"Unknown status '{status}'. Valid states: {valid}") from err


def validate_transition(current_status: EscrowStatus | int | str, event_name: str) -> EscrowStatus:
    """Validate a status transition and return the new status.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status)

    if event_name not in {event.id for event in sm.events}:
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {sm.status.name}: {sm.get_allowed_events()}"
        )

    getattr(sm, event_name)()
    return sm.status


def guard_transition(escrow_id: int, current_status: EscrowStatus, event_name: str) -> EscrowStatus:
    """Fire ``event_name`` from ``current_status`` or raise InvalidStateError."""
    try:
        return validate_transition(current_status, event_name)
    except TransitionNotAllowed as err:
        raise InvalidStateError(escrow_id, EscrowStatus(current_status).name, event_name) from err
