"""Service wiring.

Builds the process-wide store, gateway, notifier and service instances
from settings and hands them to FastAPI through ``Depends``. Tests call
``reset_dependencies()`` to start from empty stores.
"""

import structlog

from acp_checkout.application.checkout_session_service import CheckoutSessionService
from acp_checkout.application.idempotency_service import (
    IdempotencyService,
    InMemoryIdempotencyStore,
)
from acp_checkout.application.webhook_service import WebhookService
from acp_checkout.domain.pricing import PricingPolicy, SessionBuilder
from acp_checkout.infrastructure.config import settings
from acp_checkout.infrastructure.event_notifier import HttpEventNotifier
from acp_checkout.infrastructure.payment_gateway import (
    PaymentGateway,
    SimulatedPaymentGateway,
    StripePaymentGateway,
)
from acp_checkout.infrastructure.product_catalog import InMemoryProductCatalog
from acp_checkout.infrastructure.session_store import InMemorySessionStore

logger = structlog.get_logger()

_session_store: InMemorySessionStore | None = None
_idempotency_service: IdempotencyService | None = None
_payment_gateway: PaymentGateway | None = None
_event_notifier: HttpEventNotifier | None = None
_product_catalog: InMemoryProductCatalog | None = None
_checkout_session_service: CheckoutSessionService | None = None
_webhook_service: WebhookService | None = None


def get_session_store() -> InMemorySessionStore:
    """Get session store singleton."""
    global _session_store
    if _session_store is None:
        _session_store = InMemorySessionStore()
    return _session_store


def get_idempotency_service() -> IdempotencyService:
    """Get idempotency gate singleton."""
    global _idempotency_service
    if _idempotency_service is None:
        _idempotency_service = IdempotencyService(
            store=InMemoryIdempotencyStore(ttl_seconds=settings.idempotency_ttl_seconds),
            poll_attempts=settings.idempotency_poll_attempts,
            poll_interval=settings.idempotency_poll_interval_seconds,
        )
    return _idempotency_service


def get_payment_gateway() -> PaymentGateway:
    """Get payment gateway singleton.

    Returns:
        Stripe gateway when enabled, otherwise the simulated gateway.
    """
    global _payment_gateway
    if _payment_gateway is None:
        if settings.stripe_enabled:
            _payment_gateway = StripePaymentGateway(
                api_key=settings.stripe_api_key,
                connect_account=settings.stripe_connect_account,
            )
        else:
            _payment_gateway = SimulatedPaymentGateway()
        logger.info("Payment gateway configured", stripe_enabled=settings.stripe_enabled)
    return _payment_gateway


def get_event_notifier() -> HttpEventNotifier:
    """Get event notifier singleton."""
    global _event_notifier
    if _event_notifier is None:
        _event_notifier = HttpEventNotifier(
            webhook_url=settings.notifier_webhook_url,
            webhook_secret=settings.notifier_webhook_secret,
            timeout=settings.notifier_timeout_seconds,
        )
    return _event_notifier


def get_product_catalog() -> InMemoryProductCatalog:
    """Get product catalog singleton, loaded from ``catalog_path`` if set."""
    global _product_catalog
    if _product_catalog is None:
        if settings.catalog_path:
            _product_catalog = InMemoryProductCatalog.from_file(settings.catalog_path)
        else:
            _product_catalog = InMemoryProductCatalog()
    return _product_catalog


def get_pricing_policy() -> PricingPolicy:
    """Build the pricing policy from settings."""
    return PricingPolicy(
        tax_rate_bps=settings.tax_rate_bps,
        ship_standard_cents=settings.ship_standard_cents,
        ship_express_cents=settings.ship_express_cents,
        default_unit_price_cents=settings.default_unit_price_cents,
        stripe_account_id=settings.stripe_account_id or None,
        terms_of_use_url=settings.tos_url or None,
        privacy_policy_url=settings.privacy_url or None,
        return_policy_url=settings.returns_url or None,
        order_permalink_base_url=settings.order_permalink_base_url,
    )


def get_checkout_session_service() -> CheckoutSessionService:
    """Get checkout session service singleton."""
    global _checkout_session_service
    if _checkout_session_service is None:
        _checkout_session_service = CheckoutSessionService(
            store=get_session_store(),
            idempotency=get_idempotency_service(),
            builder=SessionBuilder(get_pricing_policy()),
            gateway=get_payment_gateway(),
            notifier=get_event_notifier(),
            catalog=get_product_catalog(),
            connect_account=settings.stripe_connect_account,
        )
    return _checkout_session_service


def get_webhook_service() -> WebhookService:
    """Get webhook reconciliation service singleton."""
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService(
            store=get_session_store(),
            idempotency=get_idempotency_service(),
            gateway=get_payment_gateway(),
            notifier=get_event_notifier(),
        )
    return _webhook_service


async def shutdown_dependencies() -> None:
    """Flush pending notifications and close clients."""
    if _event_notifier is not None:
        await _event_notifier.aclose()


def reset_dependencies() -> None:
    """Drop all singletons (for testing)."""
    global _session_store, _idempotency_service, _payment_gateway, _event_notifier
    global _product_catalog, _checkout_session_service, _webhook_service
    _session_store = None
    _idempotency_service = None
    _payment_gateway = None
    _event_notifier = None
    _product_catalog = None
    _checkout_session_service = None
    _webhook_service = None
