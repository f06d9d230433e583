"""Domain layer - session aggregate, state machine, pricing, requests.

- **Entities**: the checkout ``Session`` and its parts (line items,
  totals, fulfillment options, order, messages)
- **State Machine**: ``SessionStatus`` and its allowed transitions
- **Pricing**: ``SessionBuilder`` derives line items and totals
- **Requests**: validated request variants consumed by the engine
- **Exceptions**: domain-specific errors

Example usage:
    from acp_checkout.domain import CreateSessionRequest, RequestedItem, SessionBuilder

    builder = SessionBuilder()
    session = builder.build(
        "cs_123",
        CreateSessionRequest(items=[RequestedItem(id="sku1", quantity=2, unit_price_cents=500)]),
    )
    print(session.total_amount())  # 1000
"""

from acp_checkout.domain.entities import (
    Address,
    Buyer,
    DisputeStatus,
    FulfillmentOption,
    ItemRef,
    LineItem,
    Link,
    Message,
    Order,
    PaymentProvider,
    PaymentStatus,
    RefundStatus,
    Session,
    Total,
)
from acp_checkout.domain.exceptions import (
    DomainError,
    IdempotencyConflictError,
    InvalidRequestError,
    InvalidStateTransitionError,
    SessionError,
    SessionNotFoundError,
    SessionNotMutableError,
)
from acp_checkout.domain.pricing import PricingPolicy, SessionBuilder, apply_tax
from acp_checkout.domain.requests import (
    CompleteSessionRequest,
    CreateSessionRequest,
    RequestedItem,
    UpdateSessionRequest,
)
from acp_checkout.domain.state_machines import SessionStatus, validate_session_transition

__all__ = [
    # Entities
    "Address",
    "Buyer",
    "DisputeStatus",
    "FulfillmentOption",
    "ItemRef",
    "LineItem",
    "Link",
    "Message",
    "Order",
    "PaymentProvider",
    "PaymentStatus",
    "RefundStatus",
    "Session",
    "Total",
    # Exceptions
    "DomainError",
    "IdempotencyConflictError",
    "InvalidRequestError",
    "InvalidStateTransitionError",
    "SessionError",
    "SessionNotFoundError",
    "SessionNotMutableError",
    # Pricing
    "PricingPolicy",
    "SessionBuilder",
    "apply_tax",
    # Requests
    "CompleteSessionRequest",
    "CreateSessionRequest",
    "RequestedItem",
    "UpdateSessionRequest",
    # State machine
    "SessionStatus",
    "validate_session_transition",
]
