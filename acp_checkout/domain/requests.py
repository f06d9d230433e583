"""Request variants accepted by the session lifecycle engine.

The HTTP layer validates payloads with pydantic and converts them into
these plain dataclasses, so the engine never handles raw JSON.
"""

from dataclasses import dataclass, field, replace

from acp_checkout.domain.entities import Address, Buyer


@dataclass(frozen=True)
class RequestedItem:
    """Item requested by the agent.

    Attributes:
        id: Item (product) identifier.
        quantity: Number of units, positive.
        unit_price_cents: Explicit unit price; looked up from the catalog
            when absent.
        currency: Currency of the looked-up unit price.
    """

    id: str
    quantity: int
    unit_price_cents: int | None = None
    currency: str | None = None

    def with_price(self, unit_price_cents: int, currency: str | None) -> "RequestedItem":
        return replace(self, unit_price_cents=unit_price_cents, currency=currency)


@dataclass(frozen=True)
class CreateSessionRequest:
    """Create a session, or the merged input of a rebuild."""

    items: list[RequestedItem] = field(default_factory=list)
    fulfillment_address: Address | None = None
    fulfillment_option_id: str | None = None
    currency: str | None = None
    buyer: Buyer | None = None


@dataclass(frozen=True)
class UpdateSessionRequest:
    """Partial update of a session.

    ``items`` is None when omitted; an empty list clears the cart.
    """

    items: list[RequestedItem] | None = None
    fulfillment_address: Address | None = None
    fulfillment_option_id: str | None = None
    currency: str | None = None


@dataclass(frozen=True)
class CompleteSessionRequest:
    """Completion request carrying the payment token and buyer hints."""

    payment_token: str | None = None
    buyer: Buyer | None = None
    email: str | None = None
