"""Payment provider webhook endpoints.

Provides:
- POST /webhooks/stripe - receive Stripe events
- Stripe-Signature verification against the webhook secret
- Deduplication by event id
- Out-of-order tolerance

Only a signature or payload failure is rejected (400) so that Stripe
retries it; every verified event is acknowledged with 200.
"""

from typing import Annotated, Any

import stripe
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError

from acp_checkout.application.webhook_service import ProviderEvent, WebhookService
from acp_checkout.dependencies import get_webhook_service
from acp_checkout.infrastructure.config import settings

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# ============================================================================
# Schemas
# ============================================================================


class StripeEventData(BaseModel):
    """The ``data`` envelope of a Stripe event."""

    object_: dict[str, Any] = Field(
        default_factory=dict, alias="object", description="Affected Stripe object"
    )


class StripeEventPayload(BaseModel):
    """Incoming Stripe event."""

    id: str = Field(..., min_length=1, description="Event ID (evt_...)")
    type: str = Field(..., min_length=1, description="Event type (e.g., charge.refunded)")
    created: int | None = Field(None, description="Event creation time (Unix seconds)")
    data: StripeEventData = Field(default_factory=StripeEventData, description="Event data")

    def to_event(self) -> ProviderEvent:
        """Convert payload to a provider event."""
        return ProviderEvent.from_payload(self.model_dump(by_alias=True))


class WebhookResponse(BaseModel):
    """Response to webhook delivery."""

    success: bool = Field(..., description="Whether the event was handled without error")
    event_id: str = Field(..., description="Event ID")
    status: str = Field(..., description="Event status (processed, duplicate, ignored, failed)")
    message: str = Field(..., description="Status message")


class WebhookErrorResponse(BaseModel):
    """Error response for rejected webhooks."""

    error_code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> WebhookService:
    """Get webhook service."""
    return get_webhook_service()


def verify_stripe_signature(payload: str, signature: str | None) -> None:
    """Verify the Stripe-Signature header of a payload.

    Verification is skipped with a warning when no webhook secret is
    configured.

    Args:
        payload: Decoded request body.
        signature: Stripe-Signature header value.

    Raises:
        HTTPException: If the signature is missing or invalid.
    """
    secret = settings.stripe_webhook_secret
    if not secret:
        logger.warning("Stripe webhook secret not configured, skipping signature check")
        return

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "MISSING_SIGNATURE",
                "message": "Missing Stripe-Signature header",
            },
        )

    try:
        stripe.WebhookSignature.verify_header(
            payload,
            signature,
            secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except stripe.SignatureVerificationError as e:
        logger.warning("Stripe webhook signature verification failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "INVALID_SIGNATURE",
                "message": "Webhook signature verification failed",
            },
        ) from e


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/stripe",
    response_model=WebhookResponse,
    responses={400: {"model": WebhookErrorResponse}},
    summary="Receive Stripe webhook",
    description="Receive payment, refund and dispute events from Stripe.",
)
async def receive_stripe_webhook(
    request: Request,
    service: Annotated[WebhookService, Depends(get_service)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> WebhookResponse:
    """Receive and reconcile a Stripe event.

    Args:
        request: The incoming request.
        service: Webhook service.
        stripe_signature: Stripe-Signature header.

    Returns:
        WebhookResponse with the processing outcome.

    Raises:
        HTTPException: If the signature or payload is invalid.
    """
    try:
        payload = (await request.body()).decode("utf-8")
    except UnicodeDecodeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "INVALID_PAYLOAD", "message": "Webhook body is not valid UTF-8"},
        ) from e

    verify_stripe_signature(payload, stripe_signature)

    try:
        body = StripeEventPayload.model_validate_json(payload)
    except ValidationError as e:
        logger.warning("Invalid Stripe webhook payload", errors=e.error_count())
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "INVALID_PAYLOAD",
                "message": "Webhook body is not a Stripe event",
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in error["loc"]) or "body",
                        "message": error["msg"],
                    }
                    for error in e.errors()
                ],
            },
        ) from e

    event = body.to_event()
    logger.info(
        "Received Stripe webhook",
        event_id=event.event_id,
        event_type=event.event_type,
    )

    result = await service.process_event(event)

    return WebhookResponse(
        success=result.success,
        event_id=result.event_id,
        status=result.status.value,
        message=result.message,
    )
