"""Tests for the checkout session lifecycle service.

Tests:
- Create, read, update, complete and cancel
- Exactly-once charging under retries and concurrency
- Payment declines and unexpected gateway failures
- Session event notifications
"""

import asyncio

import pytest

from acp_checkout.application.checkout_session_service import (
    CheckoutSessionService,
    ErrorCode,
)
from acp_checkout.domain import (
    Address,
    Buyer,
    CompleteSessionRequest,
    CreateSessionRequest,
    PaymentStatus,
    PricingPolicy,
    RequestedItem,
    SessionBuilder,
    SessionStatus,
    UpdateSessionRequest,
)
from acp_checkout.domain.pricing import EXPRESS_OPTION_ID
from acp_checkout.infrastructure.event_notifier import SessionEventType
from acp_checkout.infrastructure.payment_gateway import (
    ChargeRequest,
    ChargeResult,
    ChargeStatus,
    SimulatedPaymentGateway,
)


# ============================================================================
# Helpers
# ============================================================================


class SlowGateway(SimulatedPaymentGateway):
    """Simulated gateway that takes a while to answer."""

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        await asyncio.sleep(0.05)
        return await super().charge(request)


class BrokenGateway(SimulatedPaymentGateway):
    """Gateway that fails unexpectedly."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        self.calls += 1
        raise RuntimeError("gateway unavailable")


class PendingGateway(SimulatedPaymentGateway):
    """Gateway whose charges settle asynchronously."""

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        self.charges.append(request)
        return ChargeResult(
            status=ChargeStatus.PROCESSING,
            payment_intent_id="pi_pending_1",
            payment_intent_status="processing",
        )


def cart(*items: tuple[str, int, int]) -> list[RequestedItem]:
    return [RequestedItem(id=i, quantity=q, unit_price_cents=p) for i, q, p in items]


async def create_ready_session(service: CheckoutSessionService, address: Address):
    result = await service.create_session(
        CreateSessionRequest(items=cart(("sku1", 2, 500)), fulfillment_address=address)
    )
    assert result.success
    return result.session


# ============================================================================
# Create / Get
# ============================================================================


class TestCreateSession:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_create_without_address(self, service, store, notifier) -> None:
        result = await service.create_session(CreateSessionRequest(items=cart(("sku1", 2, 500))))

        assert result.success
        session = result.session
        assert session.id.startswith("cs_")
        assert session.status == SessionStatus.NOT_READY_FOR_PAYMENT
        assert session.total_amount() == 1000
        assert store.get(session.id) == session
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_create_with_address_is_ready(self, service, address) -> None:
        session = await create_ready_session(service, address)

        assert session.status == SessionStatus.READY_FOR_PAYMENT
        assert session.total_amount() == 1200

    @pytest.mark.asyncio
    async def test_price_from_catalog(self, service) -> None:
        """Items sent without a unit price are priced from the catalog."""
        result = await service.create_session(
            CreateSessionRequest(items=[RequestedItem(id="catalog_sku", quantity=2)])
        )
        assert result.session.line_items[0].base_amount == 5000

    @pytest.mark.asyncio
    async def test_unknown_item_uses_default_price(self, service) -> None:
        result = await service.create_session(
            CreateSessionRequest(items=[RequestedItem(id="mystery", quantity=1)])
        )
        assert result.session.line_items[0].base_amount == 100

    @pytest.mark.asyncio
    async def test_invalid_item_rejected(self, service) -> None:
        result = await service.create_session(
            CreateSessionRequest(items=[RequestedItem(id="sku1", quantity=0)])
        )
        assert not result.success
        assert result.error_code == ErrorCode.INVALID_REQUEST
        assert result.error_details == {"field": "items.quantity"}


class TestGetSession:
    @pytest.mark.asyncio
    async def test_get_existing(self, service, address) -> None:
        session = await create_ready_session(service, address)
        result = await service.get_session(session.id)
        assert result.success
        assert result.session == session

    @pytest.mark.asyncio
    async def test_get_unknown(self, service) -> None:
        result = await service.get_session("cs_missing")
        assert not result.success
        assert result.error_code == ErrorCode.SESSION_NOT_FOUND


# ============================================================================
# Update
# ============================================================================


class TestUpdateSession:
    """Tests for session updates."""

    @pytest.mark.asyncio
    async def test_address_only_update_keeps_items(self, service, address, notifier) -> None:
        created = await service.create_session(CreateSessionRequest(items=cart(("sku1", 2, 500))))

        result = await service.update_session(
            created.session.id, UpdateSessionRequest(fulfillment_address=address)
        )

        session = result.session
        assert result.success
        assert session.status == SessionStatus.READY_FOR_PAYMENT
        assert [(li.item.id, li.item.quantity) for li in session.line_items] == [("sku1", 2)]
        assert session.total_amount() == 1200
        assert session.created_at == created.session.created_at
        assert notifier.types() == [SessionEventType.SESSION_UPDATED]

    @pytest.mark.asyncio
    async def test_replace_items(self, service, address) -> None:
        session = await create_ready_session(service, address)

        result = await service.update_session(
            session.id, UpdateSessionRequest(items=cart(("sku2", 1, 300)))
        )

        assert [li.id for li in result.session.line_items] == ["li_sku2"]
        assert result.session.fulfillment_address == address

    @pytest.mark.asyncio
    async def test_change_fulfillment_option(self, service, address) -> None:
        session = await create_ready_session(service, address)

        result = await service.update_session(
            session.id, UpdateSessionRequest(fulfillment_option_id=EXPRESS_OPTION_ID)
        )

        assert result.session.fulfillment_option_id == EXPRESS_OPTION_ID
        assert result.session.total_amount() == 1000 + 100 + 1500

    @pytest.mark.asyncio
    async def test_unknown_option_rejected(self, service, address) -> None:
        session = await create_ready_session(service, address)

        result = await service.update_session(
            session.id, UpdateSessionRequest(fulfillment_option_id="fulfillment_option_drone")
        )

        assert result.error_code == ErrorCode.INVALID_REQUEST
        assert (await service.get_session(session.id)).session == session

    @pytest.mark.asyncio
    async def test_update_unknown_session(self, service) -> None:
        result = await service.update_session("cs_missing", UpdateSessionRequest())
        assert result.error_code == ErrorCode.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_update_completed_session_rejected(self, service, address) -> None:
        session = await create_ready_session(service, address)
        await service.complete_session(session.id, CompleteSessionRequest(payment_token="tok_ok"))

        result = await service.update_session(
            session.id, UpdateSessionRequest(items=cart(("sku9", 1, 100)))
        )

        assert result.error_code == ErrorCode.INVALID_STATE

    @pytest.mark.asyncio
    async def test_update_replays_with_same_key(self, service, address) -> None:
        """A retried update with the same key returns the first result."""
        session = await create_ready_session(service, address)

        first = await service.update_session(
            session.id, UpdateSessionRequest(items=cart(("sku2", 1, 300))), idempotency_key="u1"
        )
        second = await service.update_session(
            session.id, UpdateSessionRequest(items=cart(("sku3", 5, 300))), idempotency_key="u1"
        )

        assert second == first
        stored = (await service.get_session(session.id)).session
        assert [li.item.id for li in stored.line_items] == ["sku2"]


# ============================================================================
# Complete
# ============================================================================


class TestCompleteSession:
    """Tests for session completion."""

    @pytest.mark.asyncio
    async def test_complete_charges_total_once(self, service, address, gateway, store) -> None:
        session = await create_ready_session(service, address)

        result = await service.complete_session(
            session.id,
            CompleteSessionRequest(payment_token="tok_ok", email="ada@example.com"),
            idempotency_key="k1",
        )

        completed = result.session
        assert result.success
        assert completed.status == SessionStatus.COMPLETED
        assert completed.payment_status == PaymentStatus.SUCCEEDED
        assert completed.payment_intent_id.startswith("pi_stub_")
        assert completed.order.checkout_session_id == session.id
        assert completed.buyer == Buyer(first_name="Ada", email="ada@example.com")
        assert len(gateway.charges) == 1
        charge = gateway.charges[0]
        assert charge.amount == 1200
        assert charge.currency == "usd"
        assert charge.idempotency_key == f"complete:{session.id}:k1"
        assert charge.metadata["checkout_session_id"] == session.id
        assert store.find_by_payment_reference(completed.payment_intent_id).id == session.id

    @pytest.mark.asyncio
    async def test_retry_with_same_key_replays(self, service, address, gateway) -> None:
        session = await create_ready_session(service, address)
        request = CompleteSessionRequest(payment_token="tok_ok")

        first = await service.complete_session(session.id, request, idempotency_key="k1")
        second = await service.complete_session(session.id, request, idempotency_key="k1")

        assert second == first
        assert len(gateway.charges) == 1

    @pytest.mark.asyncio
    async def test_concurrent_completion_charges_once(
        self, store, idempotency, notifier, address
    ) -> None:
        gateway = SlowGateway()
        service = CheckoutSessionService(
            store=store,
            idempotency=idempotency,
            builder=SessionBuilder(PricingPolicy()),
            gateway=gateway,
            notifier=notifier,
        )
        session = await create_ready_session(service, address)
        request = CompleteSessionRequest(payment_token="tok_ok")

        first, second = await asyncio.gather(
            service.complete_session(session.id, request, idempotency_key="k1"),
            service.complete_session(session.id, request, idempotency_key="k1"),
        )

        assert first.success and second.success
        assert first == second
        assert first.session.status == SessionStatus.COMPLETED
        assert len(gateway.charges) == 1
        assert notifier.types() == [SessionEventType.SESSION_CREATED]

    @pytest.mark.asyncio
    async def test_second_completion_with_new_key_rejected(
        self, service, address, gateway
    ) -> None:
        session = await create_ready_session(service, address)
        request = CompleteSessionRequest(payment_token="tok_ok")
        await service.complete_session(session.id, request, idempotency_key="k1")

        result = await service.complete_session(session.id, request, idempotency_key="k2")

        assert result.error_code == ErrorCode.INVALID_STATE
        assert len(gateway.charges) == 1

    @pytest.mark.asyncio
    async def test_completion_emits_single_created_event(
        self, service, address, notifier
    ) -> None:
        session = await create_ready_session(service, address)

        await service.complete_session(session.id, CompleteSessionRequest(payment_token="tok_ok"))

        assert notifier.events == [(SessionEventType.SESSION_CREATED, session.id, "completed")]

    @pytest.mark.asyncio
    async def test_not_ready_session_cannot_complete(self, service, gateway) -> None:
        created = await service.create_session(CreateSessionRequest(items=cart(("sku1", 1, 100))))

        result = await service.complete_session(
            created.session.id, CompleteSessionRequest(payment_token="tok_ok")
        )

        assert result.error_code == ErrorCode.INVALID_STATE
        assert gateway.charges == []

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, service, address) -> None:
        session = await create_ready_session(service, address)

        result = await service.complete_session(session.id, CompleteSessionRequest())

        assert result.error_code == ErrorCode.INVALID_REQUEST
        assert result.error_details == {"field": "payment_method_token"}

    @pytest.mark.asyncio
    async def test_complete_unknown_session(self, service) -> None:
        result = await service.complete_session(
            "cs_missing", CompleteSessionRequest(payment_token="tok_ok")
        )
        assert result.error_code == ErrorCode.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_declined_payment_keeps_session_payable(
        self, service, address, notifier
    ) -> None:
        session = await create_ready_session(service, address)

        result = await service.complete_session(
            session.id, CompleteSessionRequest(payment_token="tok_decline")
        )

        declined = result.session
        assert result.success
        assert declined.status == SessionStatus.READY_FOR_PAYMENT
        assert declined.payment_status == PaymentStatus.FAILED
        assert declined.failure_message == "Your card was declined."
        assert [(m.type, m.text) for m in declined.messages] == [
            ("payment_error", "Your card was declined.")
        ]
        assert declined.order is None
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_retry_after_decline_completes(self, service, address) -> None:
        session = await create_ready_session(service, address)
        await service.complete_session(
            session.id, CompleteSessionRequest(payment_token="tok_decline"), idempotency_key="a"
        )

        result = await service.complete_session(
            session.id, CompleteSessionRequest(payment_token="tok_ok"), idempotency_key="b"
        )

        assert result.session.status == SessionStatus.COMPLETED
        assert result.session.failure_message is None
        assert len(result.session.messages) == 1

    @pytest.mark.asyncio
    async def test_processing_charge_is_not_a_decline(
        self, store, idempotency, notifier, address
    ) -> None:
        service = CheckoutSessionService(
            store=store,
            idempotency=idempotency,
            builder=SessionBuilder(PricingPolicy()),
            gateway=PendingGateway(),
            notifier=notifier,
        )
        session = await create_ready_session(service, address)

        result = await service.complete_session(
            session.id, CompleteSessionRequest(payment_token="spt_ach")
        )

        pending = result.session
        assert result.success
        assert pending.status == SessionStatus.READY_FOR_PAYMENT
        assert pending.payment_status == PaymentStatus.PROCESSING
        assert pending.payment_intent_id == "pi_pending_1"
        assert pending.failure_message is None
        assert pending.messages == []
        assert pending.order is None
        assert store.find_by_payment_reference("pi_pending_1").id == session.id
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_gateway_failure_is_internal_error_and_cached(
        self, store, idempotency, notifier, address
    ) -> None:
        gateway = BrokenGateway()
        service = CheckoutSessionService(
            store=store,
            idempotency=idempotency,
            builder=SessionBuilder(PricingPolicy()),
            gateway=gateway,
            notifier=notifier,
        )
        session = await create_ready_session(service, address)
        request = CompleteSessionRequest(payment_token="tok_ok")

        first = await service.complete_session(session.id, request, idempotency_key="k1")
        second = await service.complete_session(session.id, request, idempotency_key="k1")

        assert first.error_code == ErrorCode.INTERNAL_ERROR
        assert second == first
        assert gateway.calls == 1
        assert store.get(session.id).status == SessionStatus.READY_FOR_PAYMENT


# ============================================================================
# Cancel
# ============================================================================


class TestCancelSession:
    """Tests for session cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_open_session(self, service, address, notifier) -> None:
        session = await create_ready_session(service, address)

        result = await service.cancel_session(session.id)

        assert result.session.status == SessionStatus.CANCELED
        assert notifier.types() == [SessionEventType.SESSION_UPDATED]

    @pytest.mark.asyncio
    async def test_cancel_not_ready_session(self, service) -> None:
        created = await service.create_session(CreateSessionRequest())
        result = await service.cancel_session(created.session.id)
        assert result.session.status == SessionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected(self, service, address) -> None:
        session = await create_ready_session(service, address)
        await service.cancel_session(session.id)

        result = await service.cancel_session(session.id)

        assert result.error_code == ErrorCode.INVALID_STATE

    @pytest.mark.asyncio
    async def test_cancel_completed_rejected(self, service, address) -> None:
        session = await create_ready_session(service, address)
        await service.complete_session(session.id, CompleteSessionRequest(payment_token="tok_ok"))

        result = await service.cancel_session(session.id)

        assert result.error_code == ErrorCode.INVALID_STATE

    @pytest.mark.asyncio
    async def test_complete_canceled_rejected(self, service, address, gateway) -> None:
        session = await create_ready_session(service, address)
        await service.cancel_session(session.id)

        result = await service.complete_session(
            session.id, CompleteSessionRequest(payment_token="tok_ok")
        )

        assert result.error_code == ErrorCode.INVALID_STATE
        assert gateway.charges == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_session(self, service) -> None:
        result = await service.cancel_session("cs_missing")
        assert result.error_code == ErrorCode.SESSION_NOT_FOUND
