"""API schemas for the checkout session API.

Pydantic models for request validation and response serialization.
Request models convert themselves into the domain request variants
consumed by the lifecycle service.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from acp_checkout.domain.entities import (
    Address,
    Buyer,
    DisputeStatus,
    PaymentStatus,
    RefundStatus,
)
from acp_checkout.domain.requests import (
    CompleteSessionRequest,
    CreateSessionRequest,
    RequestedItem,
    UpdateSessionRequest,
)
from acp_checkout.domain.state_machines import SessionStatus


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: list[ErrorDetail] = Field(
        default_factory=list, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class AddressSchema(BaseModel):
    """Fulfillment address."""

    name: str | None = Field(default=None, description="Recipient full name")
    line_one: str | None = Field(default=None, description="Street address")
    line_two: str | None = Field(default=None, description="Apartment, suite, etc.")
    city: str | None = None
    state: str | None = None
    country: str | None = Field(default=None, description="ISO country code")
    postal_code: str | None = None

    def to_domain(self) -> Address:
        return Address(**self.model_dump())


class BuyerSchema(BaseModel):
    """Buyer contact details."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone_number: str | None = None

    def to_domain(self) -> Buyer:
        return Buyer(**self.model_dump())


# ============================================================================
# Request Schemas
# ============================================================================


class ItemRequest(BaseModel):
    """Requested cart item."""

    id: str = Field(..., min_length=1, description="Item identifier")
    quantity: int = Field(..., gt=0, description="Number of units")
    unit_price_cents: int | None = Field(
        default=None,
        ge=0,
        description="Unit price in minor units; looked up from the catalog when omitted",
    )

    def to_domain(self) -> RequestedItem:
        return RequestedItem(
            id=self.id,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
        )


class CheckoutSessionCreateRequest(BaseModel):
    """Request to create a checkout session."""

    items: list[ItemRequest] = Field(default_factory=list, description="Cart items")
    fulfillment_address: AddressSchema | None = Field(
        default=None, description="Shipping address; makes the session payable"
    )
    fulfillment_option_id: str | None = Field(default=None, description="Selected shipping option")
    currency: str | None = Field(default=None, description="ISO currency code")
    buyer: BuyerSchema | None = Field(default=None, description="Buyer contact details")

    def to_domain(self) -> CreateSessionRequest:
        return CreateSessionRequest(
            items=[item.to_domain() for item in self.items],
            fulfillment_address=(
                self.fulfillment_address.to_domain() if self.fulfillment_address else None
            ),
            fulfillment_option_id=self.fulfillment_option_id,
            currency=self.currency,
            buyer=self.buyer.to_domain() if self.buyer else None,
        )


class CheckoutSessionUpdateRequest(BaseModel):
    """Partial update of a checkout session.

    Omitting ``items`` keeps the current cart; an empty list clears it.
    """

    items: list[ItemRequest] | None = Field(default=None, description="Replacement cart items")
    fulfillment_address: AddressSchema | None = None
    fulfillment_option_id: str | None = None
    currency: str | None = None

    def to_domain(self) -> UpdateSessionRequest:
        return UpdateSessionRequest(
            items=[item.to_domain() for item in self.items] if self.items is not None else None,
            fulfillment_address=(
                self.fulfillment_address.to_domain() if self.fulfillment_address else None
            ),
            fulfillment_option_id=self.fulfillment_option_id,
            currency=self.currency,
        )


class PaymentDataSchema(BaseModel):
    """Payment block of a completion request."""

    token: str | None = Field(default=None, description="Payment method token")
    payment_method_token: str | None = Field(default=None, description="Payment method token")
    provider: str | None = Field(default=None, description="Payment provider, e.g. stripe")


class CheckoutSessionCompleteRequest(BaseModel):
    """Request to complete a checkout session.

    The payment token is accepted as ``payment.payment_method_token``,
    ``payment_data.token``, ``payment_data.payment_method_token`` or a
    top-level ``payment_method_token``.
    """

    payment: PaymentDataSchema | None = None
    payment_data: PaymentDataSchema | None = None
    payment_method_token: str | None = None
    buyer: BuyerSchema | None = None
    email: str | None = None

    def resolve_payment_token(self) -> str | None:
        """Pick the payment token from the accepted locations.

        Returns:
            First non-empty token, or None.
        """
        candidates = []
        if self.payment is not None:
            candidates += [self.payment.payment_method_token, self.payment.token]
        if self.payment_data is not None:
            candidates += [self.payment_data.token, self.payment_data.payment_method_token]
        candidates.append(self.payment_method_token)
        return next((token for token in candidates if token), None)

    def to_domain(self) -> CompleteSessionRequest:
        return CompleteSessionRequest(
            payment_token=self.resolve_payment_token(),
            buyer=self.buyer.to_domain() if self.buyer else None,
            email=self.email,
        )


class BindPaymentIntentRequest(BaseModel):
    """Debug request binding a payment intent to a session."""

    checkout_session_id: str = Field(..., min_length=1)
    payment_intent_id: str = Field(..., min_length=1)


# ============================================================================
# Response Schemas
# ============================================================================


class ItemRefSchema(BaseModel):
    id: str
    quantity: int


class LineItemSchema(BaseModel):
    """Priced cart line (minor units)."""

    id: str
    item: ItemRefSchema
    base_amount: int
    discount: int
    subtotal: int
    tax: int
    total: int


class TotalSchema(BaseModel):
    type: str
    display_text: str
    amount: int


class FulfillmentOptionSchema(BaseModel):
    """Shipping option."""

    type: str
    id: str
    title: str
    subtitle: str
    carrier: str
    earliest_delivery_time: datetime | None = None
    latest_delivery_time: datetime | None = None
    subtotal: int
    tax: int
    total: int


class LinkSchema(BaseModel):
    type: str
    url: str


class PaymentProviderSchema(BaseModel):
    provider: str
    stripe_account_id: str | None = None
    supported_payment_methods: list[str] = Field(default_factory=list)


class MessageSchema(BaseModel):
    type: str
    text: str


class OrderSchema(BaseModel):
    id: str
    checkout_session_id: str
    permalink_url: str


class CheckoutSessionResponse(BaseModel):
    """Checkout session representation."""

    id: str = Field(..., description="Checkout session ID")
    status: SessionStatus = Field(..., description="Session status")
    currency: str = Field(..., description="Lowercase ISO currency code")
    line_items: list[LineItemSchema] = Field(default_factory=list)
    totals: list[TotalSchema] = Field(default_factory=list)
    fulfillment_address: AddressSchema | None = None
    fulfillment_option_id: str | None = None
    fulfillment_options: list[FulfillmentOptionSchema] = Field(default_factory=list)
    payment_provider: PaymentProviderSchema | None = None
    links: list[LinkSchema] = Field(default_factory=list)
    messages: list[MessageSchema] = Field(default_factory=list)
    buyer: BuyerSchema | None = None
    payment_status: PaymentStatus | None = None
    payment_intent_id: str | None = None
    failure_message: str | None = None
    refund_status: RefundStatus | None = None
    refund_amount: int | None = None
    charge_id: str | None = None
    dispute_status: DisputeStatus | None = None
    dispute_id: str | None = None
    order: OrderSchema | None = None
    created_at: datetime
    updated_at: datetime
