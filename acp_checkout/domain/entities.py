"""Domain entities for checkout sessions.

The checkout session is the single aggregate of the service. Line items,
totals and fulfillment options are derived state produced by the pricing
builder; payment, refund and dispute fields are owned by the completion
flow and the webhook reconciler.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from acp_checkout.domain.state_machines import SessionStatus


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _compact_dict_factory(items: list[tuple[str, Any]]) -> dict[str, Any]:
    """Build a JSON-ready dict, dropping absent fields."""
    return {key: _serialize_value(value) for key, value in items if value is not None}


# ============================================================================
# Provider-derived Statuses
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment status as last reported by the charge or a provider event."""

    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    def is_settled(self) -> bool:
        """Check if the payment reached a final outcome.

        Returns:
            True for SUCCEEDED and FAILED.
        """
        return self in {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED}


class RefundStatus(str, Enum):
    """Refund progress of the session's charge."""

    NONE = "none"
    PARTIAL = "partial"
    REFUNDED = "refunded"

    @classmethod
    def from_amounts(cls, amount: int, amount_refunded: int, fully_refunded: bool) -> "RefundStatus":
        """Derive refund status from charge amounts.

        Args:
            amount: Charged amount in minor units.
            amount_refunded: Refunded amount in minor units.
            fully_refunded: Provider flag marking the charge fully refunded.

        Returns:
            NONE, PARTIAL or REFUNDED.
        """
        if amount_refunded <= 0:
            return cls.NONE
        if not fully_refunded or amount_refunded < amount:
            return cls.PARTIAL
        return cls.REFUNDED


class DisputeStatus(str, Enum):
    """Dispute state of the session's charge."""

    OPEN = "open"
    CLOSED = "closed"


# ============================================================================
# Session Parts
# ============================================================================


@dataclass(frozen=True)
class Address:
    """Fulfillment address supplied by the buyer."""

    name: str | None = None
    line_one: str | None = None
    line_two: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None

    @property
    def first_name(self) -> str | None:
        """First word of the full name, if any."""
        if not self.name or not self.name.strip():
            return None
        return self.name.strip().split()[0]


@dataclass
class Buyer:
    """Buyer contact details attached at completion."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone_number: str | None = None

    def is_empty(self) -> bool:
        return not any((self.first_name, self.last_name, self.email, self.phone_number))


@dataclass(frozen=True)
class ItemRef:
    """Reference to a purchased item and its quantity."""

    id: str
    quantity: int


@dataclass
class LineItem:
    """Priced line of the cart. All amounts are minor currency units.

    Attributes:
        id: Line item identifier.
        item: Item reference with quantity.
        base_amount: Unit price times quantity.
        discount: Discount applied to the line.
        subtotal: base_amount minus discount.
        tax: Tax on the line.
        total: subtotal plus tax.
    """

    id: str
    item: ItemRef
    base_amount: int
    discount: int
    subtotal: int
    tax: int
    total: int

    @property
    def unit_amount(self) -> int:
        """Unit price recovered from the base amount."""
        if self.item.quantity <= 0:
            return 0
        return self.base_amount // self.item.quantity


@dataclass
class FulfillmentOption:
    """A shipping choice offered once an address is known."""

    id: str
    title: str
    subtitle: str
    carrier: str
    subtotal: int
    tax: int
    total: int
    type: str = "shipping"
    earliest_delivery_time: datetime | None = None
    latest_delivery_time: datetime | None = None


@dataclass
class Total:
    """One row of the session's totals breakdown."""

    type: str
    display_text: str
    amount: int


@dataclass
class Link:
    """Merchant policy link."""

    type: str
    url: str


@dataclass
class PaymentProvider:
    """Payment provider advertised to the agent."""

    provider: str = "stripe"
    stripe_account_id: str | None = None
    supported_payment_methods: list[str] = field(default_factory=lambda: ["card"])


@dataclass
class Message:
    """Message shown to the buyer, e.g. a payment error."""

    type: str
    text: str


@dataclass
class Order:
    """Order created by a successful completion."""

    id: str
    checkout_session_id: str
    permalink_url: str


# ============================================================================
# Checkout Session Aggregate
# ============================================================================


@dataclass
class Session:
    """Checkout session aggregate.

    Sessions are compared by value so that replayed results can be checked
    for equality. Records are replaced wholesale in the session store.

    Attributes:
        id: Session identifier ("cs_..."), immutable.
        status: Lifecycle status.
        currency: Lowercase ISO currency code.
        line_items: Priced cart lines, rebuilt on every cart mutation.
        totals: Ordered totals breakdown.
        fulfillment_address: Shipping address, when supplied.
        fulfillment_option_id: Selected fulfillment option.
        fulfillment_options: Offered fulfillment options.
        payment_provider: Provider advertised for payment.
        links: Merchant policy links.
        messages: Append-only buyer-facing messages.
        buyer: Buyer contact details.
        payment_status: Last known payment status.
        payment_intent_id: Provider payment reference.
        failure_message: Last payment failure reason.
        payment_event_at: Provider timestamp of the last applied payment event.
        refund_status: Refund progress.
        refund_amount: Refunded amount in minor units.
        charge_id: Provider charge reference.
        dispute_status: Dispute state.
        dispute_id: Provider dispute reference.
        order: Order, present only once completed.
        created_at: Creation timestamp.
        updated_at: Last mutation timestamp.
    """

    id: str
    status: SessionStatus
    currency: str
    line_items: list[LineItem] = field(default_factory=list)
    totals: list[Total] = field(default_factory=list)
    fulfillment_address: Address | None = None
    fulfillment_option_id: str | None = None
    fulfillment_options: list[FulfillmentOption] = field(default_factory=list)
    payment_provider: PaymentProvider | None = None
    links: list[Link] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    buyer: Buyer | None = None
    payment_status: PaymentStatus | None = None
    payment_intent_id: str | None = None
    failure_message: str | None = None
    payment_event_at: datetime | None = None
    refund_status: RefundStatus | None = None
    refund_amount: int | None = None
    charge_id: str | None = None
    dispute_status: DisputeStatus | None = None
    dispute_id: str | None = None
    order: Order | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def total_amount(self) -> int:
        """Get the payable amount.

        Returns:
            Amount of the "total" row, or 0 when there is none.
        """
        for total in self.totals:
            if total.type == "total":
                return total.amount
        return 0

    def touch(self) -> None:
        """Refresh the last mutation timestamp."""
        self.updated_at = _utc_now()

    def add_message(self, message_type: str, text: str) -> None:
        """Append a buyer-facing message.

        Args:
            message_type: Message type, e.g. "payment_error".
            text: Message text.
        """
        self.messages.append(Message(type=message_type, text=text))

    def to_dict(self) -> dict[str, Any]:
        """Convert session to a JSON-ready dictionary.

        Absent optional fields are omitted.

        Returns:
            Dictionary representation of the session.
        """
        return asdict(self, dict_factory=_compact_dict_factory)
