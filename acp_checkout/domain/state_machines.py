"""State machine for checkout sessions.

Defines which status changes the lifecycle engine may apply. Creation
and cart updates derive the status from address presence; completion
and cancellation are explicit transitions checked against this table.
"""

from enum import Enum

from acp_checkout.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Checkout Session State Machine
# ============================================================================


class SessionStatus(str, Enum):
    """Checkout session lifecycle states.

    State diagram:
        NOT_READY_FOR_PAYMENT ◄──── update ────► READY_FOR_PAYMENT
              │                                   │        │
              │ cancel                   complete │        │ cancel
              ▼                                   ▼        ▼
          CANCELED                          COMPLETED   CANCELED

    PAYMENT_FAILED behaves like READY_FOR_PAYMENT. A declined payment
    leaves the session in its payable state with a message attached.
    """

    NOT_READY_FOR_PAYMENT = "not_ready_for_payment"
    READY_FOR_PAYMENT = "ready_for_payment"
    PAYMENT_FAILED = "payment_failed"
    COMPLETED = "completed"
    CANCELED = "canceled"

    def can_transition_to(self, target: "SessionStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _SESSION_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["SessionStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return sorted(_SESSION_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_SESSION_TRANSITIONS.get(self, set())) == 0

    def is_payable(self) -> bool:
        """Check if a completion attempt is allowed.

        Returns:
            True if the session may be charged.
        """
        return self.can_transition_to(SessionStatus.COMPLETED)

    @classmethod
    def for_cart(cls, has_address: bool) -> "SessionStatus":
        """Derive the status of a freshly built cart.

        Args:
            has_address: Whether a fulfillment address is present.

        Returns:
            READY_FOR_PAYMENT with an address, otherwise NOT_READY_FOR_PAYMENT.
        """
        return cls.READY_FOR_PAYMENT if has_address else cls.NOT_READY_FOR_PAYMENT


_ACTIONABLE = {
    SessionStatus.NOT_READY_FOR_PAYMENT,
    SessionStatus.READY_FOR_PAYMENT,
    SessionStatus.CANCELED,
}

# Session state transitions (defined outside enum to avoid Enum restrictions)
_SESSION_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.NOT_READY_FOR_PAYMENT: set(_ACTIONABLE),
    SessionStatus.READY_FOR_PAYMENT: _ACTIONABLE | {SessionStatus.COMPLETED},
    SessionStatus.PAYMENT_FAILED: _ACTIONABLE | {SessionStatus.COMPLETED},
    SessionStatus.COMPLETED: set(),  # Terminal state
    SessionStatus.CANCELED: set(),  # Terminal state
}


def validate_session_transition(
    session_id: str,
    current_status: SessionStatus,
    target_status: SessionStatus,
) -> None:
    """Validate and raise if a session state transition is invalid.

    Args:
        session_id: Session identifier for error message.
        current_status: Current session status.
        target_status: Target session status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="CheckoutSession",
            entity_id=session_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
