"""Debug endpoints.

POST /debug/bind_payment_intent binds a payment intent created outside
the completion flow (e.g. from the Stripe CLI) to a session, so provider
events for it can be reconciled. Disabled unless ``debug_bind_enabled``.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from acp_checkout.api.checkout_sessions import session_to_response
from acp_checkout.api.schemas import (
    BindPaymentIntentRequest,
    CheckoutSessionResponse,
    ErrorResponse,
)
from acp_checkout.application.webhook_service import WebhookService
from acp_checkout.dependencies import get_webhook_service
from acp_checkout.domain.exceptions import SessionNotFoundError
from acp_checkout.infrastructure.config import settings

router = APIRouter(prefix="/debug", tags=["Debug"])


def get_service() -> WebhookService:
    """Get webhook service."""
    return get_webhook_service()


@router.post(
    "/bind_payment_intent",
    response_model=CheckoutSessionResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
    summary="Bind payment intent to session",
)
async def bind_payment_intent(
    request: BindPaymentIntentRequest,
    service: Annotated[WebhookService, Depends(get_service)],
) -> CheckoutSessionResponse:
    """Bind a payment intent id to a checkout session.

    Raises:
        HTTPException: If the endpoint is disabled or the session is unknown.
    """
    if not settings.debug_bind_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "NOT_FOUND", "message": "Debug endpoints are disabled"},
        )

    try:
        session = await service.bind_payment_reference(
            request.checkout_session_id,
            request.payment_intent_id,
        )
    except SessionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "SESSION_NOT_FOUND", "message": e.message},
        ) from e

    return session_to_response(session)
