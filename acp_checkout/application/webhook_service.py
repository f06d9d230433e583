"""Webhook reconciliation service.

Merges asynchronous payment-provider events into checkout sessions:
- Event deduplication by provider event id
- Out-of-order tolerance (a succeeded payment is final, other payment
  events are ordered by provider timestamp)
- Session lookup by payment reference, with a charge lookup hop for
  disputes
- A ``session.updated`` notification for every applied mutation

Every outcome except a signature failure (handled at the HTTP edge) is
acknowledged, so the provider never retries an event this service has
seen. Events for unknown sessions are acknowledged and ignored.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from acp_checkout.application.idempotency_service import IdempotencyService
from acp_checkout.domain.entities import (
    DisputeStatus,
    PaymentStatus,
    RefundStatus,
    Session,
)
from acp_checkout.domain.exceptions import IdempotencyConflictError, SessionNotFoundError
from acp_checkout.domain.state_machines import SessionStatus
from acp_checkout.infrastructure.event_notifier import EventNotifier, SessionEventType
from acp_checkout.infrastructure.payment_gateway import PaymentGateway
from acp_checkout.infrastructure.session_store import SessionStore

logger = structlog.get_logger()

PROCESSED_SENTINEL = {"ok": True}


class ProviderEventType(str, Enum):
    """Provider event types handled by the reconciler."""

    PAYMENT_INTENT_PROCESSING = "payment_intent.processing"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    DISPUTE_CREATED = "charge.dispute.created"
    DISPUTE_CLOSED = "charge.dispute.closed"
    GRANTED_TOKEN_USED = "shared_payment.granted_token.used"


class EventStatus(str, Enum):
    """Outcome of processing a provider event."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class ProviderEvent:
    """A verified provider event.

    Attributes:
        event_id: Provider event id (evt_...).
        event_type: Raw event type.
        data: The event's ``data.object`` payload.
        created: Provider timestamp, when present.
    """

    event_id: str
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    created: datetime | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProviderEvent":
        """Build an event from a decoded provider payload.

        Args:
            payload: Event JSON with ``id``, ``type`` and ``data.object``.

        Returns:
            Provider event.
        """
        data = payload.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        created = payload.get("created")
        if isinstance(created, int):
            created = datetime.fromtimestamp(created, tz=timezone.utc)
        return cls(
            event_id=str(payload.get("id", "")),
            event_type=str(payload.get("type", "")),
            data=dict(obj) if isinstance(obj, dict) else {},
            created=created if isinstance(created, datetime) else None,
        )


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        success: Whether the event was handled without error.
        event_id: The event ID.
        status: Processing outcome.
        message: Status message.
        session_id: Session the event was applied to, if any.
        duplicate: Whether this was a duplicate delivery.
    """

    success: bool
    event_id: str
    status: EventStatus
    message: str
    session_id: str | None = None
    duplicate: bool = False


def extract_failure_message(data: dict[str, Any]) -> str:
    """Pick a human-readable failure reason from a payment intent.

    Args:
        data: Payment intent object.

    Returns:
        Failure reason.
    """
    last_error = data.get("last_payment_error") or {}
    if isinstance(last_error, dict) and last_error.get("message"):
        return str(last_error["message"])
    if data.get("cancellation_reason"):
        return str(data["cancellation_reason"])
    if data.get("status"):
        return f"payment_intent status={data['status']}"
    return "payment_failed"


class WebhookService:
    """Service reconciling provider events into checkout sessions."""

    def __init__(
        self,
        store: SessionStore,
        idempotency: IdempotencyService,
        gateway: PaymentGateway,
        notifier: EventNotifier,
    ) -> None:
        """Initialize webhook service.

        Args:
            store: Session store.
            idempotency: Idempotency gate used for event deduplication.
            gateway: Gateway used to resolve charge references.
            notifier: Session event notifier.
        """
        self.store = store
        self.idempotency = idempotency
        self.gateway = gateway
        self.notifier = notifier

    async def process_event(self, event: ProviderEvent) -> WebhookResult:
        """Process a provider event exactly once.

        Args:
            event: Verified provider event.

        Returns:
            Processing result; always acknowledged.
        """
        logger.info(
            "Processing provider event",
            event_id=event.event_id,
            event_type=event.event_type,
        )

        key = IdempotencyService.make_key("evt", event.event_id)
        try:
            claim = await self.idempotency.claim(key)
        except IdempotencyConflictError:
            logger.info("Provider event still in progress elsewhere", event_id=event.event_id)
            return self._duplicate(event, "Event is being processed")

        if claim.is_replay:
            logger.info("Duplicate provider event ignored", event_id=event.event_id)
            return self._duplicate(event, "Event already processed")

        try:
            result = await self._handle_event(event)
        except Exception as e:
            logger.error(
                "Failed to process provider event",
                event_id=event.event_id,
                event_type=event.event_type,
                error=str(e),
            )
            result = WebhookResult(
                success=False,
                event_id=event.event_id,
                status=EventStatus.FAILED,
                message=str(e),
            )

        await self.idempotency.commit(key, PROCESSED_SENTINEL)
        return result

    async def bind_payment_reference(self, session_id: str, payment_intent_id: str) -> Session:
        """Bind a payment intent to a session.

        Used to wire test payments created outside the completion flow.

        Args:
            session_id: Session to bind.
            payment_intent_id: Provider payment intent id.

        Returns:
            The updated session.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.payment_intent_id = payment_intent_id
        session.touch()
        self.store.put(session)
        logger.info(
            "Payment intent bound to session",
            session_id=session_id,
            payment_intent_id=payment_intent_id,
        )
        return session

    # ------------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------------

    async def _handle_event(self, event: ProviderEvent) -> WebhookResult:
        handlers: dict[ProviderEventType, Callable[[ProviderEvent], Awaitable[WebhookResult]]] = {
            ProviderEventType.PAYMENT_INTENT_PROCESSING: self._handle_payment_intent,
            ProviderEventType.PAYMENT_INTENT_SUCCEEDED: self._handle_payment_intent,
            ProviderEventType.PAYMENT_INTENT_FAILED: self._handle_payment_intent,
            ProviderEventType.CHARGE_REFUNDED: self._handle_charge_refunded,
            ProviderEventType.DISPUTE_CREATED: self._handle_dispute,
            ProviderEventType.DISPUTE_CLOSED: self._handle_dispute,
        }

        try:
            event_type = ProviderEventType(event.event_type)
        except ValueError:
            logger.debug("Unhandled provider event type", event_type=event.event_type)
            return self._ignored(event, f"Unhandled event type: {event.event_type}")

        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Provider event acknowledged", event_type=event.event_type)
            return self._ignored(event, "Event acknowledged")
        return await handler(event)

    async def _handle_payment_intent(self, event: ProviderEvent) -> WebhookResult:
        payment_intent_id = event.data.get("id")
        session = self._find_session(payment_intent_id)
        if session is None:
            return self._no_session(event, payment_intent_id)

        new_status = {
            ProviderEventType.PAYMENT_INTENT_PROCESSING.value: PaymentStatus.PROCESSING,
            ProviderEventType.PAYMENT_INTENT_SUCCEEDED.value: PaymentStatus.SUCCEEDED,
            ProviderEventType.PAYMENT_INTENT_FAILED.value: PaymentStatus.FAILED,
        }[event.event_type]

        stale_reason = self._stale_payment_reason(session, new_status, event.created)
        if stale_reason is not None:
            logger.info(
                "Stale payment event ignored",
                event_id=event.event_id,
                session_id=session.id,
                payment_status=session.payment_status.value if session.payment_status else None,
                event_status=new_status.value,
            )
            return self._ignored(event, stale_reason)

        session.payment_status = new_status
        session.failure_message = (
            extract_failure_message(event.data) if new_status == PaymentStatus.FAILED else None
        )
        if event.created is not None and (
            session.payment_event_at is None or event.created > session.payment_event_at
        ):
            session.payment_event_at = event.created

        return await self._save(event, session)

    async def _handle_charge_refunded(self, event: ProviderEvent) -> WebhookResult:
        payment_intent_id = event.data.get("payment_intent")
        session = self._find_session(payment_intent_id)
        if session is None:
            return self._no_session(event, payment_intent_id)

        amount_refunded = int(event.data.get("amount_refunded") or 0)
        session.refund_status = RefundStatus.from_amounts(
            amount=int(event.data.get("amount") or 0),
            amount_refunded=amount_refunded,
            fully_refunded=bool(event.data.get("refunded", False)),
        )
        session.refund_amount = amount_refunded
        if event.data.get("id"):
            session.charge_id = event.data["id"]

        return await self._save(event, session)

    async def _handle_dispute(self, event: ProviderEvent) -> WebhookResult:
        charge_id = event.data.get("charge")
        payment_intent_id = event.data.get("payment_intent")
        if not payment_intent_id and charge_id:
            payment_intent_id = await self.gateway.resolve_payment_reference(charge_id)
        if not payment_intent_id:
            logger.info("Dispute event without payment reference", charge_id=charge_id)
            return self._ignored(event, "No payment reference for dispute")

        session = self._find_session(payment_intent_id)
        if session is None:
            return self._no_session(event, payment_intent_id)

        session.dispute_status = (
            DisputeStatus.OPEN
            if event.event_type == ProviderEventType.DISPUTE_CREATED.value
            else DisputeStatus.CLOSED
        )
        if event.data.get("id"):
            session.dispute_id = event.data["id"]
        if charge_id:
            session.charge_id = charge_id

        return await self._save(event, session)

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    @staticmethod
    def _stale_payment_reason(
        session: Session,
        new_status: PaymentStatus,
        created: datetime | None,
    ) -> str | None:
        """Decide whether a payment event must not be applied.

        A succeeded payment is final. Otherwise the provider timestamp
        orders events, so a newer event may move a failed payment back to
        processing when the buyer retries. Without comparable timestamps,
        a processing event never replaces a settled status.

        Returns:
            Reason the event is stale, or None if it applies.
        """
        if new_status == PaymentStatus.SUCCEEDED:
            return None
        current = session.payment_status
        if current == PaymentStatus.SUCCEEDED or session.status == SessionStatus.COMPLETED:
            return "Payment already succeeded"

        last = session.payment_event_at
        if created is not None and last is not None:
            if created < last:
                return "Event is older than the last applied payment event"
            if created > last:
                return None

        if new_status == PaymentStatus.PROCESSING and current is not None and current.is_settled():
            return "Payment already settled"
        return None

    def _find_session(self, payment_intent_id: str | None) -> Session | None:
        if not payment_intent_id:
            return None
        return self.store.find_by_payment_reference(payment_intent_id)

    async def _save(self, event: ProviderEvent, session: Session) -> WebhookResult:
        session.touch()
        self.store.put(session)
        logger.info(
            "Provider event applied",
            event_id=event.event_id,
            event_type=event.event_type,
            session_id=session.id,
        )
        await self.notifier.publish(SessionEventType.SESSION_UPDATED, session)
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.PROCESSED,
            message="Event processed successfully",
            session_id=session.id,
        )

    def _no_session(self, event: ProviderEvent, payment_intent_id: str | None) -> WebhookResult:
        logger.info(
            "No session found for provider event",
            event_id=event.event_id,
            event_type=event.event_type,
            payment_intent_id=payment_intent_id,
        )
        return self._ignored(event, "No session found for payment reference")

    @staticmethod
    def _ignored(event: ProviderEvent, message: str) -> WebhookResult:
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.IGNORED,
            message=message,
        )

    @staticmethod
    def _duplicate(event: ProviderEvent, message: str) -> WebhookResult:
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.DUPLICATE,
            message=message,
            duplicate=True,
        )
