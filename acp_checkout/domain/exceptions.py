"""Domain exceptions.

Errors raised by the session model, the pricing builder and the
idempotency gate. The application layer catches them at its boundary
and converts them into result objects with stable error codes.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an operation is not allowed in the session's current state."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "CheckoutSession").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: States reachable from the current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Session Errors
# ============================================================================


class SessionError(DomainError):
    """Base class for checkout session errors."""

    pass


class SessionNotFoundError(SessionError):
    """Raised when a checkout session id is unknown."""

    def __init__(self, session_id: str) -> None:
        """Initialize session not found error.

        Args:
            session_id: ID of the missing session.
        """
        super().__init__(
            f"Checkout session not found: {session_id}",
            details={"session_id": session_id},
        )


class SessionNotMutableError(SessionError):
    """Raised when an operation is attempted on a session that does not allow it."""

    def __init__(self, session_id: str, current_status: str, operation: str) -> None:
        """Initialize session not mutable error.

        Args:
            session_id: ID of the session.
            current_status: Current status of the session.
            operation: Rejected operation ("update", "complete", "cancel").
        """
        super().__init__(
            f"Cannot {operation} checkout session {session_id} in status '{current_status}'",
            details={
                "session_id": session_id,
                "current_status": current_status,
                "operation": operation,
            },
        )


class InvalidRequestError(SessionError):
    """Raised when a request is malformed or references unknown data."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize invalid request error.

        Args:
            message: What is wrong with the request.
            field: Name of the offending field, if known.
        """
        super().__init__(message, details={"field": field} if field else None)


# ============================================================================
# Idempotency Errors
# ============================================================================


class IdempotencyConflictError(DomainError):
    """Raised when an idempotency key is still held by another in-flight call."""

    def __init__(self, key: str) -> None:
        """Initialize idempotency conflict error.

        Args:
            key: Composite idempotency key that is in progress.
        """
        super().__init__(
            "A request with this idempotency key is already in progress",
            details={"idempotency_key": key},
        )
