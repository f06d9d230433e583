"""Checkout session lifecycle service.

Orchestrates the session lifecycle:
1. Create a priced session from a cart
2. Update cart, address, fulfillment option or currency
3. Complete by charging the payable total exactly once
4. Cancel a session that is not yet terminal

Update and complete accept an optional idempotency key. A retried call
with the same key replays the first call's committed result; a call
racing an in-flight one short-polls and then reports a conflict.

Every operation returns a ``SessionResult``. Domain errors and
unexpected failures are converted to error codes at this boundary.
"""

import uuid
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

import structlog

from acp_checkout.application.idempotency_service import IdempotencyService
from acp_checkout.domain.entities import Buyer, PaymentStatus, Session
from acp_checkout.domain.exceptions import (
    DomainError,
    IdempotencyConflictError,
    InvalidRequestError,
    InvalidStateTransitionError,
    SessionNotFoundError,
    SessionNotMutableError,
)
from acp_checkout.domain.pricing import SessionBuilder
from acp_checkout.domain.requests import (
    CompleteSessionRequest,
    CreateSessionRequest,
    RequestedItem,
    UpdateSessionRequest,
)
from acp_checkout.domain.state_machines import SessionStatus, validate_session_transition
from acp_checkout.infrastructure.event_notifier import EventNotifier, SessionEventType
from acp_checkout.infrastructure.payment_gateway import ChargeRequest, PaymentGateway
from acp_checkout.infrastructure.product_catalog import InMemoryProductCatalog
from acp_checkout.infrastructure.session_store import SessionStore

logger = structlog.get_logger()

CHARGE_SOURCE = "openai-agentic-checkout"

# Fields owned by the completion flow and the webhook reconciler
PAYMENT_OWNED_FIELDS = (
    "payment_status",
    "payment_intent_id",
    "failure_message",
    "payment_event_at",
    "refund_status",
    "refund_amount",
    "charge_id",
    "dispute_status",
    "dispute_id",
    "order",
)


# ============================================================================
# Service Result Types
# ============================================================================


class ErrorCode:
    """Error codes reported by session operations."""

    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    IDEMPOTENCY_IN_PROGRESS = "IDEMPOTENCY_IN_PROGRESS"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_STATE = "INVALID_STATE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class SessionResult:
    """Result of a session operation."""

    session: Session | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None
    error_details: dict | None = None

    @classmethod
    def failure(cls, error_code: str, error: str, details: dict | None = None) -> "SessionResult":
        return cls(success=False, error=error, error_code=error_code, error_details=details)


def new_session_id() -> str:
    """Generate a checkout session id."""
    return f"cs_{uuid.uuid4().hex}"


# ============================================================================
# Checkout Session Service
# ============================================================================


class CheckoutSessionService:
    """Application service for the checkout session lifecycle."""

    def __init__(
        self,
        store: SessionStore,
        idempotency: IdempotencyService,
        builder: SessionBuilder,
        gateway: PaymentGateway,
        notifier: EventNotifier,
        catalog: InMemoryProductCatalog | None = None,
        connect_account: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            store: Session store.
            idempotency: Idempotency gate.
            builder: Pricing builder.
            gateway: Payment gateway.
            notifier: Session event notifier.
            catalog: Price lookup for items sent without a unit price.
            connect_account: Connected account forwarded to the gateway.
        """
        self.store = store
        self.idempotency = idempotency
        self.builder = builder
        self.gateway = gateway
        self.notifier = notifier
        self.catalog = catalog
        self.connect_account = connect_account or None

    # ------------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------------

    async def create_session(self, request: CreateSessionRequest) -> SessionResult:
        """Create a priced session.

        Args:
            request: Items, optional address, option, currency and buyer.

        Returns:
            SessionResult with the new session.
        """
        return await self._guard("create", None, lambda: self._create(request))

    async def get_session(self, session_id: str) -> SessionResult:
        """Get a session by ID.

        Args:
            session_id: Session to read.

        Returns:
            SessionResult with the session or SESSION_NOT_FOUND.
        """
        session = self.store.get(session_id)
        if session is None:
            return self._not_found(session_id)
        return SessionResult(session=session)

    async def update_session(
        self,
        session_id: str,
        request: UpdateSessionRequest,
        idempotency_key: str | None = None,
    ) -> SessionResult:
        """Apply a partial update and rebuild the session.

        Args:
            session_id: Session to update.
            request: Fields to change; omitted items keep the cart.
            idempotency_key: Optional caller key for safe retries.

        Returns:
            SessionResult with the rebuilt session.
        """
        if self.store.get(session_id) is None:
            return self._not_found(session_id)
        return await self._run_idempotent(
            "update",
            session_id,
            idempotency_key,
            lambda: self._update(session_id, request),
        )

    async def complete_session(
        self,
        session_id: str,
        request: CompleteSessionRequest,
        idempotency_key: str | None = None,
    ) -> SessionResult:
        """Charge the payable total and complete the session.

        A declined payment is not an error: the session keeps its status
        and carries a ``payment_error`` message.

        Args:
            session_id: Session to complete.
            request: Payment token and buyer hints.
            idempotency_key: Optional caller key for safe retries.

        Returns:
            SessionResult with the completed or annotated session.
        """
        if self.store.get(session_id) is None:
            return self._not_found(session_id)
        return await self._run_idempotent(
            "complete",
            session_id,
            idempotency_key,
            lambda: self._complete(session_id, request, idempotency_key),
        )

    async def cancel_session(self, session_id: str) -> SessionResult:
        """Cancel a session that is not completed or canceled.

        Args:
            session_id: Session to cancel.

        Returns:
            SessionResult with the canceled session.
        """
        return await self._guard("cancel", session_id, lambda: self._cancel(session_id))

    # ------------------------------------------------------------------------
    # Operation bodies
    # ------------------------------------------------------------------------

    async def _create(self, request: CreateSessionRequest) -> SessionResult:
        request = replace(request, items=self._enrich_items(request.items))
        session = self.builder.build(new_session_id(), request)
        self.store.put(session)

        logger.info(
            "Checkout session created",
            session_id=session.id,
            status=session.status.value,
            item_count=len(session.line_items),
            total=session.total_amount(),
        )
        return SessionResult(session=session)

    async def _update(self, session_id: str, request: UpdateSessionRequest) -> SessionResult:
        current = self._load(session_id)
        if current.status.is_terminal():
            raise SessionNotMutableError(session_id, current.status.value, "update")

        items = request.items if request.items is not None else self.builder.derive_items(current)
        items = self._enrich_items(items)
        currency = (
            request.currency
            or next((item.currency for item in items if item.currency), None)
            or current.currency
        )
        merged = CreateSessionRequest(
            items=items,
            fulfillment_address=request.fulfillment_address or current.fulfillment_address,
            fulfillment_option_id=request.fulfillment_option_id or current.fulfillment_option_id,
            currency=currency,
        )

        rebuilt = self.builder.build(session_id, merged)
        validate_session_transition(session_id, current.status, rebuilt.status)
        self._carry_over(current, rebuilt)
        self.store.put(rebuilt)

        logger.info(
            "Checkout session updated",
            session_id=session_id,
            from_status=current.status.value,
            to_status=rebuilt.status.value,
            total=rebuilt.total_amount(),
        )
        await self.notifier.publish(SessionEventType.SESSION_UPDATED, rebuilt)
        return SessionResult(session=rebuilt)

    async def _complete(
        self,
        session_id: str,
        request: CompleteSessionRequest,
        idempotency_key: str | None,
    ) -> SessionResult:
        session = self._load(session_id)
        if not session.status.is_payable():
            raise SessionNotMutableError(session_id, session.status.value, "complete")
        if not request.payment_token:
            raise InvalidRequestError(
                "A payment method token is required",
                field="payment_method_token",
            )

        charge_request = ChargeRequest(
            token=request.payment_token,
            amount=session.total_amount(),
            currency=session.currency,
            idempotency_key=(
                IdempotencyService.make_key("complete", session_id, idempotency_key)
                if idempotency_key
                else None
            ),
            routing_hint=self.connect_account,
            metadata={"checkout_session_id": session_id, "source": CHARGE_SOURCE},
        )
        charge = await self.gateway.charge(charge_request)

        if charge.pending:
            session.payment_status = PaymentStatus.PROCESSING
            session.payment_intent_id = charge.payment_intent_id
            session.failure_message = None
            session.touch()
            self.store.put(session)

            logger.info(
                "Checkout session payment processing",
                session_id=session_id,
                payment_intent_id=charge.payment_intent_id,
                amount=charge_request.amount,
            )
            return SessionResult(session=session)

        if not charge.succeeded:
            message = charge.failure_message or "Payment failed"
            session.payment_status = PaymentStatus.FAILED
            session.failure_message = message
            if charge.payment_intent_id:
                session.payment_intent_id = charge.payment_intent_id
            session.add_message("payment_error", message)
            session.touch()
            self.store.put(session)

            logger.warning(
                "Checkout session payment failed",
                session_id=session_id,
                amount=charge_request.amount,
                reason=message,
            )
            return SessionResult(session=session)

        session.payment_status = PaymentStatus.SUCCEEDED
        session.payment_intent_id = charge.payment_intent_id
        session.failure_message = None
        self._fill_buyer(session, request)
        self.builder.mark_completed(session)
        self.store.put(session)

        logger.info(
            "Checkout session completed",
            session_id=session_id,
            order_id=session.order.id if session.order else None,
            payment_intent_id=charge.payment_intent_id,
            amount=charge_request.amount,
        )
        await self.notifier.publish(SessionEventType.SESSION_CREATED, session)
        return SessionResult(session=session)

    async def _cancel(self, session_id: str) -> SessionResult:
        session = self._load(session_id)
        if session.status.is_terminal():
            raise SessionNotMutableError(session_id, session.status.value, "cancel")
        validate_session_transition(session_id, session.status, SessionStatus.CANCELED)

        previous = session.status
        session.status = SessionStatus.CANCELED
        session.touch()
        self.store.put(session)

        logger.info(
            "Checkout session canceled",
            session_id=session_id,
            from_status=previous.value,
        )
        await self.notifier.publish(SessionEventType.SESSION_UPDATED, session)
        return SessionResult(session=session)

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _load(self, session_id: str) -> Session:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _not_found(self, session_id: str) -> SessionResult:
        return SessionResult.failure(
            ErrorCode.SESSION_NOT_FOUND,
            f"Checkout session not found: {session_id}",
            {"session_id": session_id},
        )

    def _enrich_items(self, items: list[RequestedItem]) -> list[RequestedItem]:
        """Fill missing unit prices from the catalog."""
        if self.catalog is None:
            return list(items)
        enriched = []
        for item in items:
            if item.unit_price_cents is None and item.id:
                price = self.catalog.find_price(item.id)
                if price is not None:
                    item = item.with_price(price.unit_cents, price.currency)
            enriched.append(item)
        return enriched

    @staticmethod
    def _carry_over(current: Session, rebuilt: Session) -> None:
        for name in PAYMENT_OWNED_FIELDS:
            setattr(rebuilt, name, getattr(current, name))
        rebuilt.messages = list(current.messages)
        rebuilt.buyer = current.buyer
        rebuilt.created_at = current.created_at

    @staticmethod
    def _fill_buyer(session: Session, request: CompleteSessionRequest) -> None:
        """Attach buyer details without overwriting known values.

        The first name falls back to the address full name; the email is
        only ever taken from the request.
        """
        if session.buyer is not None:
            buyer = replace(session.buyer)
        elif request.buyer is not None:
            buyer = replace(request.buyer)
        else:
            buyer = Buyer()

        if not buyer.first_name and session.fulfillment_address is not None:
            buyer.first_name = session.fulfillment_address.first_name
        if not buyer.email:
            request_email = request.buyer.email if request.buyer else None
            buyer.email = request_email or request.email

        session.buyer = None if buyer.is_empty() else buyer

    async def _run_idempotent(
        self,
        operation: str,
        session_id: str,
        idempotency_key: str | None,
        action: Callable[[], Awaitable[SessionResult]],
    ) -> SessionResult:
        """Run an operation behind the idempotency gate."""
        if not idempotency_key:
            return await self._guard(operation, session_id, action)

        key = IdempotencyService.make_key(operation, session_id, idempotency_key)
        try:
            claim = await self.idempotency.claim(key)
        except IdempotencyConflictError as e:
            return SessionResult.failure(ErrorCode.IDEMPOTENCY_IN_PROGRESS, e.message, e.details)

        if claim.is_replay:
            return claim.cached_result

        result = await self._guard(operation, session_id, action)
        await self.idempotency.commit(key, result)
        return result

    async def _guard(
        self,
        operation: str,
        session_id: str | None,
        action: Callable[[], Awaitable[SessionResult]],
    ) -> SessionResult:
        """Run an operation and convert failures into results."""
        try:
            return await action()
        except SessionNotFoundError as e:
            return SessionResult.failure(ErrorCode.SESSION_NOT_FOUND, e.message, e.details)
        except (SessionNotMutableError, InvalidStateTransitionError) as e:
            logger.info(
                "Checkout session operation not allowed",
                operation=operation,
                session_id=session_id,
                error=e.message,
            )
            return SessionResult.failure(ErrorCode.INVALID_STATE, e.message, e.details)
        except DomainError as e:
            logger.info(
                "Checkout session request rejected",
                operation=operation,
                session_id=session_id,
                error=e.message,
            )
            return SessionResult.failure(ErrorCode.INVALID_REQUEST, e.message, e.details)
        except Exception as e:
            logger.exception(
                "Checkout session operation failed",
                operation=operation,
                session_id=session_id,
                error=str(e),
            )
            return SessionResult.failure(ErrorCode.INTERNAL_ERROR, str(e))
