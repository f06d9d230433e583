"""Pricing builder for checkout sessions.

Turns a cart request into a fully priced session: line items, tax,
fulfillment options and the totals breakdown. Every cart mutation
rebuilds the session from scratch through this module, so line items
and totals are always derived state.

All amounts are integers in minor currency units (cents).
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from acp_checkout.domain.entities import (
    FulfillmentOption,
    ItemRef,
    LineItem,
    Link,
    Order,
    PaymentProvider,
    Session,
    Total,
)
from acp_checkout.domain.exceptions import InvalidRequestError
from acp_checkout.domain.requests import CreateSessionRequest, RequestedItem
from acp_checkout.domain.state_machines import SessionStatus, validate_session_transition

DEFAULT_CURRENCY = "usd"

STANDARD_OPTION_ID = "fulfillment_option_standard"
EXPRESS_OPTION_ID = "fulfillment_option_express"


@dataclass(frozen=True)
class PricingPolicy:
    """Merchant pricing configuration.

    Attributes:
        tax_rate_bps: Tax rate in basis points (1000 = 10%).
        ship_standard_cents: Standard shipping price.
        ship_express_cents: Express shipping price.
        default_unit_price_cents: Unit price when neither request nor
            catalog provides one.
        stripe_account_id: Account advertised in the payment provider block.
        terms_of_use_url: Link to terms of use.
        privacy_policy_url: Link to the privacy policy.
        return_policy_url: Link to the return policy.
        order_permalink_base_url: Prefix of order permalinks.
    """

    tax_rate_bps: int = 1000
    ship_standard_cents: int = 100
    ship_express_cents: int = 1500
    default_unit_price_cents: int = 100
    stripe_account_id: str | None = None
    terms_of_use_url: str | None = None
    privacy_policy_url: str | None = None
    return_policy_url: str | None = None
    order_permalink_base_url: str = "https://merchant.example.com/orders/"


def apply_tax(amount: int, rate_bps: int) -> int:
    """Compute tax on an amount, rounding half up.

    Args:
        amount: Taxable amount in minor units.
        rate_bps: Tax rate in basis points.

    Returns:
        Tax amount in minor units.
    """
    tax = Decimal(amount) * Decimal(rate_bps) / Decimal(10000)
    return int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class SessionBuilder:
    """Builds and finalizes checkout sessions.

    The builder is deterministic: the same session id, request and
    ``now`` always produce the same session.
    """

    def __init__(self, policy: PricingPolicy | None = None) -> None:
        """Initialize builder.

        Args:
            policy: Pricing configuration.
        """
        self.policy = policy or PricingPolicy()

    # ------------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------------

    def build(
        self,
        session_id: str,
        request: CreateSessionRequest,
        now: datetime | None = None,
    ) -> Session:
        """Build a priced session from a cart request.

        Args:
            session_id: Identifier of the session being built.
            request: Cart contents, address, option and currency.
            now: Build time, used for timestamps and delivery windows.

        Returns:
            New session with derived line items, options and totals.

        Raises:
            InvalidRequestError: If an item is malformed or the selected
                fulfillment option does not exist.
        """
        now = now or datetime.now(timezone.utc)
        has_address = request.fulfillment_address is not None
        currency = self._resolve_currency(request)

        line_items = self._build_line_items(request.items, has_address)

        options: list[FulfillmentOption] = []
        selected: FulfillmentOption | None = None
        if has_address:
            options = self._fulfillment_options(now)
            selected = self._select_option(options, request.fulfillment_option_id)

        return Session(
            id=session_id,
            status=SessionStatus.for_cart(has_address),
            currency=currency,
            line_items=line_items,
            totals=self._build_totals(line_items, selected),
            fulfillment_address=request.fulfillment_address,
            fulfillment_option_id=selected.id if selected else None,
            fulfillment_options=options,
            payment_provider=PaymentProvider(stripe_account_id=self.policy.stripe_account_id),
            links=self._links(),
            buyer=request.buyer,
            created_at=now,
            updated_at=now,
        )

    def _resolve_currency(self, request: CreateSessionRequest) -> str:
        if request.currency:
            return request.currency.lower()
        for item in request.items:
            if item.currency:
                return item.currency.lower()
        return DEFAULT_CURRENCY

    def _build_line_items(self, items: list[RequestedItem], taxable: bool) -> list[LineItem]:
        line_items: list[LineItem] = []
        seen: dict[str, int] = {}

        for item in items:
            if not item.id or not item.id.strip():
                raise InvalidRequestError("Item id is required", field="items.id")
            if item.quantity <= 0:
                raise InvalidRequestError(
                    f"Quantity must be positive for item {item.id}",
                    field="items.quantity",
                )
            unit_price = item.unit_price_cents
            if unit_price is None:
                unit_price = self.policy.default_unit_price_cents
            if unit_price < 0:
                raise InvalidRequestError(
                    f"Unit price cannot be negative for item {item.id}",
                    field="items.unit_price_cents",
                )

            seen[item.id] = seen.get(item.id, 0) + 1
            line_id = f"li_{item.id}" if seen[item.id] == 1 else f"li_{item.id}_{seen[item.id]}"

            base_amount = unit_price * item.quantity
            discount = 0
            tax = apply_tax(base_amount, self.policy.tax_rate_bps) if taxable else 0
            line_items.append(
                LineItem(
                    id=line_id,
                    item=ItemRef(id=item.id, quantity=item.quantity),
                    base_amount=base_amount,
                    discount=discount,
                    subtotal=base_amount - discount,
                    tax=tax,
                    total=base_amount - discount + tax,
                )
            )

        return line_items

    def _fulfillment_options(self, now: datetime) -> list[FulfillmentOption]:
        day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return [
            FulfillmentOption(
                id=STANDARD_OPTION_ID,
                title="Standard",
                subtitle="Arrives in 4-5 days",
                carrier="USPS",
                subtotal=self.policy.ship_standard_cents,
                tax=0,
                total=self.policy.ship_standard_cents,
                earliest_delivery_time=day + timedelta(days=4),
                latest_delivery_time=day + timedelta(days=5),
            ),
            FulfillmentOption(
                id=EXPRESS_OPTION_ID,
                title="Express",
                subtitle="Arrives in 1-2 days",
                carrier="UPS",
                subtotal=self.policy.ship_express_cents,
                tax=0,
                total=self.policy.ship_express_cents,
                earliest_delivery_time=day + timedelta(days=1),
                latest_delivery_time=day + timedelta(days=2),
            ),
        ]

    def _select_option(
        self, options: list[FulfillmentOption], option_id: str | None
    ) -> FulfillmentOption:
        if option_id is None:
            return options[0]
        for option in options:
            if option.id == option_id:
                return option
        raise InvalidRequestError(
            f"Unknown fulfillment option: {option_id}",
            field="fulfillment_option_id",
        )

    def _build_totals(
        self, line_items: list[LineItem], option: FulfillmentOption | None
    ) -> list[Total]:
        items_base = sum(li.base_amount for li in line_items)
        discount = sum(li.discount for li in line_items)
        tax = sum(li.tax for li in line_items)
        subtotal = items_base - discount

        totals = [
            Total(type="items_base_amount", display_text="Item(s) total", amount=items_base),
            Total(type="subtotal", display_text="Subtotal", amount=subtotal),
            Total(type="tax", display_text="Tax", amount=tax),
        ]
        fulfillment = 0
        if option is not None:
            fulfillment = option.total
            totals.append(Total(type="fulfillment", display_text="Fulfillment", amount=fulfillment))
        totals.append(Total(type="total", display_text="Total", amount=subtotal + tax + fulfillment))
        return totals

    def _links(self) -> list[Link]:
        candidates = [
            ("terms_of_use", self.policy.terms_of_use_url),
            ("privacy_policy", self.policy.privacy_policy_url),
            ("return_policy", self.policy.return_policy_url),
        ]
        return [Link(type=link_type, url=url) for link_type, url in candidates if url]

    # ------------------------------------------------------------------------
    # Rebuild helpers
    # ------------------------------------------------------------------------

    @staticmethod
    def derive_items(session: Session) -> list[RequestedItem]:
        """Recover the cart request from a session's line items.

        Quantities are kept and unit prices recovered from base amounts,
        so a rebuild without new items preserves the cart.

        Args:
            session: Session to read.

        Returns:
            Requested items equivalent to the current cart.
        """
        return [
            RequestedItem(
                id=li.item.id,
                quantity=li.item.quantity,
                unit_price_cents=li.unit_amount,
            )
            for li in session.line_items
        ]

    def mark_completed(self, session: Session) -> Session:
        """Move a session to COMPLETED and attach its order.

        Args:
            session: Payable session.

        Returns:
            The same session, completed.

        Raises:
            InvalidStateTransitionError: If the session cannot complete.
        """
        validate_session_transition(session.id, session.status, SessionStatus.COMPLETED)

        order_id = f"ord_{uuid.uuid4().hex}"
        session.status = SessionStatus.COMPLETED
        session.order = Order(
            id=order_id,
            checkout_session_id=session.id,
            permalink_url=f"{self.policy.order_permalink_base_url.rstrip('/')}/{order_id}",
        )
        session.touch()
        return session
