"""Checkout session API endpoints.

Provides the agentic checkout surface:
- POST /checkout_sessions - create a session
- GET /checkout_sessions/{id} - read a session
- POST|PATCH /checkout_sessions/{id} - update cart, address or option
- POST /checkout_sessions/{id}/complete - charge and complete
- POST /checkout_sessions/{id}/cancel - cancel

Update and complete honour an optional ``Idempotency-Key`` header.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status

from acp_checkout.api.schemas import (
    CheckoutSessionCompleteRequest,
    CheckoutSessionCreateRequest,
    CheckoutSessionResponse,
    CheckoutSessionUpdateRequest,
    ErrorResponse,
)
from acp_checkout.application.checkout_session_service import (
    CheckoutSessionService,
    ErrorCode,
    SessionResult,
)
from acp_checkout.dependencies import get_checkout_session_service
from acp_checkout.domain.entities import Session

router = APIRouter(prefix="/checkout_sessions", tags=["Checkout Sessions"])

ERROR_STATUS_CODES = {
    ErrorCode.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.IDEMPOTENCY_IN_PROGRESS: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request or session state"},
    404: {"model": ErrorResponse, "description": "Session not found"},
    409: {"model": ErrorResponse, "description": "Idempotency key in progress"},
    500: {"model": ErrorResponse, "description": "Internal error"},
}

IdempotencyKey = Annotated[str | None, Header(alias="Idempotency-Key")]


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> CheckoutSessionService:
    """Get checkout session service."""
    return get_checkout_session_service()


# ============================================================================
# Converters
# ============================================================================


def session_to_response(session: Session) -> CheckoutSessionResponse:
    """Convert Session entity to response schema."""
    return CheckoutSessionResponse.model_validate(session.to_dict())


def unwrap_result(result: SessionResult) -> CheckoutSessionResponse:
    """Return the session of a result or raise its error as HTTP.

    Args:
        result: Service result.

    Returns:
        Response schema of the session.

    Raises:
        HTTPException: If the operation failed.
    """
    if result.success and result.session is not None:
        return session_to_response(result.session)

    error_code = result.error_code or ErrorCode.INTERNAL_ERROR
    details = []
    field = (result.error_details or {}).get("field")
    if field:
        details.append({"field": field, "message": result.error or ""})
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={
            "error_code": error_code,
            "message": result.error or "Checkout session operation failed",
            "details": details,
        },
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=CheckoutSessionResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={400: ERROR_RESPONSES[400], 500: ERROR_RESPONSES[500]},
    summary="Create checkout session",
    description="Create a priced checkout session from a cart.",
)
async def create_checkout_session(
    request: CheckoutSessionCreateRequest,
    service: Annotated[CheckoutSessionService, Depends(get_service)],
) -> CheckoutSessionResponse:
    """Create a checkout session.

    The session is ready for payment only when a fulfillment address is
    supplied.
    """
    result = await service.create_session(request.to_domain())
    return unwrap_result(result)


@router.get(
    "/{session_id}",
    response_model=CheckoutSessionResponse,
    response_model_exclude_none=True,
    responses={404: ERROR_RESPONSES[404]},
    summary="Get checkout session",
)
async def get_checkout_session(
    session_id: str,
    service: Annotated[CheckoutSessionService, Depends(get_service)],
) -> CheckoutSessionResponse:
    """Get a checkout session by ID."""
    result = await service.get_session(session_id)
    return unwrap_result(result)


@router.api_route(
    "/{session_id}",
    methods=["POST", "PATCH"],
    response_model=CheckoutSessionResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
    summary="Update checkout session",
    description=(
        "Update items, fulfillment address, fulfillment option or currency. "
        "The session is re-priced from scratch."
    ),
)
async def update_checkout_session(
    session_id: str,
    request: CheckoutSessionUpdateRequest,
    service: Annotated[CheckoutSessionService, Depends(get_service)],
    idempotency_key: IdempotencyKey = None,
) -> CheckoutSessionResponse:
    """Update a checkout session.

    Args:
        session_id: Session to update.
        request: Fields to change.
        service: Checkout session service.
        idempotency_key: Optional key making retries safe.

    Returns:
        The updated session.
    """
    result = await service.update_session(
        session_id,
        request.to_domain(),
        idempotency_key=idempotency_key,
    )
    return unwrap_result(result)


@router.post(
    "/{session_id}/complete",
    response_model=CheckoutSessionResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
    summary="Complete checkout session",
    description=(
        "Charge the session total with the supplied payment token. A declined "
        "payment returns the session with a payment_error message."
    ),
)
async def complete_checkout_session(
    session_id: str,
    request: CheckoutSessionCompleteRequest,
    service: Annotated[CheckoutSessionService, Depends(get_service)],
    idempotency_key: IdempotencyKey = None,
) -> CheckoutSessionResponse:
    """Complete a checkout session.

    Retrying with the same ``Idempotency-Key`` returns the original
    response without charging again.

    Args:
        session_id: Session to complete.
        request: Payment token and buyer hints.
        service: Checkout session service.
        idempotency_key: Optional key making retries safe.

    Returns:
        The completed session, or the session with a payment error.
    """
    result = await service.complete_session(
        session_id,
        request.to_domain(),
        idempotency_key=idempotency_key,
    )
    return unwrap_result(result)


@router.post(
    "/{session_id}/cancel",
    response_model=CheckoutSessionResponse,
    response_model_exclude_none=True,
    responses={400: ERROR_RESPONSES[400], 404: ERROR_RESPONSES[404]},
    summary="Cancel checkout session",
)
async def cancel_checkout_session(
    session_id: str,
    service: Annotated[CheckoutSessionService, Depends(get_service)],
) -> CheckoutSessionResponse:
    """Cancel a checkout session that is not completed or canceled."""
    result = await service.cancel_session(session_id)
    return unwrap_result(result)
