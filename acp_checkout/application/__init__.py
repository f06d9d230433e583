"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from acp_checkout.application.checkout_session_service import (
    CheckoutSessionService,
    ErrorCode,
    SessionResult,
)
from acp_checkout.application.idempotency_service import (
    IdempotencyService,
    InMemoryIdempotencyStore,
)
from acp_checkout.application.webhook_service import (
    ProviderEvent,
    WebhookResult,
    WebhookService,
)

__all__ = [
    "CheckoutSessionService",
    "ErrorCode",
    "SessionResult",
    "IdempotencyService",
    "InMemoryIdempotencyStore",
    "ProviderEvent",
    "WebhookResult",
    "WebhookService",
]
