"""Payment gateway adapters.

Charges a payment token for a session's payable amount and resolves
provider references. Declines are reported as a ``ChargeResult`` with
``ChargeStatus.PAYMENT_FAILED`` and asynchronous settlement as
``ChargeStatus.PROCESSING``; only unexpected failures raise.

Two implementations:
- ``SimulatedPaymentGateway``: no network, used in development and tests
- ``StripePaymentGateway``: creates and confirms a Stripe PaymentIntent
  with a shared payment token
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import stripe
import structlog

logger = structlog.get_logger()

INTEGRATION_TAG = "openai-agentic-commerce"

# PaymentIntent statuses accepted as a successful charge
SUCCESS_INTENT_STATUSES = {"succeeded", "requires_capture"}


class ChargeStatus(str, Enum):
    """Outcome of a charge attempt."""

    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    PAYMENT_FAILED = "payment_failed"


@dataclass
class ChargeResult:
    """Result of a charge attempt.

    Attributes:
        status: Charge outcome.
        payment_intent_id: Provider payment reference, when one was created.
        payment_intent_status: Raw provider status.
        failure_message: Reason for a failed charge.
    """

    status: ChargeStatus
    payment_intent_id: str | None = None
    payment_intent_status: str | None = None
    failure_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ChargeStatus.SUCCEEDED

    @property
    def pending(self) -> bool:
        return self.status == ChargeStatus.PROCESSING

    @classmethod
    def failed(cls, message: str, **kwargs: Any) -> "ChargeResult":
        """Create a failed charge result."""
        return cls(status=ChargeStatus.PAYMENT_FAILED, failure_message=message, **kwargs)


@dataclass
class ChargeRequest:
    """Parameters of a charge.

    Attributes:
        token: Payment method token.
        amount: Amount in minor units.
        currency: Lowercase currency code.
        idempotency_key: Key forwarded to the provider.
        routing_hint: Connected account to charge on behalf of.
        metadata: Provider metadata.
    """

    token: str
    amount: int
    currency: str | None
    idempotency_key: str | None = None
    routing_hint: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """Payment gateway interface."""

    async def charge(self, request: ChargeRequest) -> ChargeResult: ...

    async def resolve_payment_reference(self, charge_id: str) -> str | None: ...


def _validate_amount(request: ChargeRequest) -> ChargeResult | None:
    if request.amount <= 0:
        return ChargeResult.failed(f"Invalid amount: {request.amount}")
    if not request.currency:
        return ChargeResult.failed("Missing currency")
    return None


# ============================================================================
# Simulated Gateway
# ============================================================================


class SimulatedPaymentGateway:
    """Gateway that settles charges locally.

    Tokens starting with ``tok_decline`` or ``tok_fail`` are declined;
    every other token succeeds with a ``pi_stub_`` reference.
    """

    DECLINE_PREFIXES = ("tok_decline", "tok_fail")

    def __init__(self) -> None:
        self.charges: list[ChargeRequest] = []
        self._charge_payment_intents: dict[str, str] = {}

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Settle a charge locally.

        Args:
            request: Charge parameters.

        Returns:
            Charge result.
        """
        invalid = _validate_amount(request)
        if invalid is not None:
            logger.info("Simulated charge rejected", reason=invalid.failure_message)
            return invalid

        self.charges.append(request)

        if request.token.startswith(self.DECLINE_PREFIXES):
            logger.info("Simulated charge declined", amount=request.amount)
            return ChargeResult.failed("Your card was declined.")

        payment_intent_id = f"pi_stub_{time.time_ns() // 1_000_000}_{len(self.charges)}"
        logger.info(
            "Simulated charge succeeded",
            payment_intent_id=payment_intent_id,
            amount=request.amount,
            currency=request.currency,
        )
        return ChargeResult(
            status=ChargeStatus.SUCCEEDED,
            payment_intent_id=payment_intent_id,
            payment_intent_status="succeeded",
        )

    def register_charge(self, charge_id: str, payment_intent_id: str) -> None:
        """Bind a charge id to a payment intent for reference lookups."""
        self._charge_payment_intents[charge_id] = payment_intent_id

    async def resolve_payment_reference(self, charge_id: str) -> str | None:
        return self._charge_payment_intents.get(charge_id)


# ============================================================================
# Stripe Gateway
# ============================================================================


class StripePaymentGateway:
    """Gateway backed by Stripe PaymentIntents.

    The Stripe SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(
        self,
        api_key: str,
        connect_account: str | None = None,
    ) -> None:
        """Initialize gateway.

        Args:
            api_key: Stripe secret key.
            connect_account: Default connected account (acct_...).
        """
        self._api_key = api_key
        self._connect_account = connect_account or None

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Create and confirm a PaymentIntent.

        Args:
            request: Charge parameters. The token must be a shared payment
                token (spt_...).

        Returns:
            Charge result; Stripe errors are reported as failed charges.
        """
        invalid = _validate_amount(request)
        if invalid is not None:
            return invalid

        if not request.token.startswith("spt_"):
            return ChargeResult.failed(
                "A valid Shared Payment Token (spt_...) is required when Stripe is enabled"
            )

        params: dict[str, Any] = {
            "amount": request.amount,
            "currency": request.currency.lower(),
            "confirm": True,
            "shared_payment_granted_token": request.token,
            "metadata": {**request.metadata, "integration": INTEGRATION_TAG},
            "api_key": self._api_key,
        }
        if request.idempotency_key:
            params["idempotency_key"] = request.idempotency_key
        account = request.routing_hint or self._connect_account
        if account:
            params["stripe_account"] = account

        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as e:
            message = e.user_message or str(e)
            logger.warning(
                "Stripe charge failed",
                error=message,
                error_type=type(e).__name__,
                amount=request.amount,
            )
            return ChargeResult.failed(f"Stripe error: {message}")

        intent_status = str(getattr(intent, "status", "") or "")
        if intent_status in SUCCESS_INTENT_STATUSES:
            logger.info(
                "Stripe charge succeeded",
                payment_intent_id=intent.id,
                payment_intent_status=intent_status,
            )
            return ChargeResult(
                status=ChargeStatus.SUCCEEDED,
                payment_intent_id=intent.id,
                payment_intent_status=intent_status,
            )

        if intent_status == "processing":
            logger.info(
                "Stripe charge processing",
                payment_intent_id=intent.id,
                amount=request.amount,
            )
            return ChargeResult(
                status=ChargeStatus.PROCESSING,
                payment_intent_id=intent.id,
                payment_intent_status=intent_status,
            )

        failure = f"Stripe PaymentIntent status={intent_status}"
        last_error = getattr(intent, "last_payment_error", None)
        last_message = getattr(last_error, "message", None) if last_error else None
        if last_message:
            failure += f" | {last_message}"
        logger.warning(
            "Stripe charge not settled",
            payment_intent_id=intent.id,
            payment_intent_status=intent_status,
        )
        return ChargeResult.failed(
            failure,
            payment_intent_id=intent.id,
            payment_intent_status=intent_status,
        )

    async def resolve_payment_reference(self, charge_id: str) -> str | None:
        """Look up the PaymentIntent behind a charge.

        Args:
            charge_id: Stripe charge id (ch_...).

        Returns:
            PaymentIntent id, or None if the charge has none.
        """
        params: dict[str, Any] = {"api_key": self._api_key}
        if self._connect_account:
            params["stripe_account"] = self._connect_account

        charge = await asyncio.to_thread(stripe.Charge.retrieve, charge_id, **params)
        payment_intent = getattr(charge, "payment_intent", None)
        if payment_intent is None:
            return None
        if isinstance(payment_intent, str):
            return payment_intent
        return getattr(payment_intent, "id", None)
