"""Shared fixtures for application service tests."""

import pytest

from acp_checkout.application.checkout_session_service import CheckoutSessionService
from acp_checkout.application.idempotency_service import (
    IdempotencyService,
    InMemoryIdempotencyStore,
)
from acp_checkout.application.webhook_service import WebhookService
from acp_checkout.domain import Address, PricingPolicy, SessionBuilder
from acp_checkout.infrastructure.event_notifier import SessionEventType
from acp_checkout.infrastructure.payment_gateway import SimulatedPaymentGateway
from acp_checkout.infrastructure.product_catalog import InMemoryProductCatalog
from acp_checkout.infrastructure.session_store import InMemorySessionStore


class RecordingNotifier:
    """Notifier that keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[SessionEventType, str, str]] = []

    async def publish(self, event_type, session) -> None:
        self.events.append((event_type, session.id, session.status.value))

    def types(self) -> list[SessionEventType]:
        return [event_type for event_type, _, _ in self.events]


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def idempotency() -> IdempotencyService:
    """Idempotency gate with a short polling budget."""
    return IdempotencyService(
        store=InMemoryIdempotencyStore(ttl_seconds=300),
        poll_attempts=50,
        poll_interval=0.01,
    )


@pytest.fixture
def gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def catalog() -> InMemoryProductCatalog:
    catalog = InMemoryProductCatalog()
    catalog.set_price("catalog_sku", 2500, "usd")
    return catalog


@pytest.fixture
def service(store, idempotency, gateway, notifier, catalog) -> CheckoutSessionService:
    """Checkout session service wired to in-memory adapters."""
    return CheckoutSessionService(
        store=store,
        idempotency=idempotency,
        builder=SessionBuilder(PricingPolicy()),
        gateway=gateway,
        notifier=notifier,
        catalog=catalog,
    )


@pytest.fixture
def webhook_service(store, idempotency, gateway, notifier) -> WebhookService:
    return WebhookService(
        store=store,
        idempotency=idempotency,
        gateway=gateway,
        notifier=notifier,
    )


@pytest.fixture
def address() -> Address:
    return Address(
        name="Ada Lovelace",
        line_one="1 Analytical Way",
        city="London",
        country="GB",
        postal_code="N1 9GU",
    )
