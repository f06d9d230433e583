"""Tests for session entities."""

from datetime import datetime, timezone

from acp_checkout.domain import (
    Address,
    Buyer,
    ItemRef,
    LineItem,
    PaymentStatus,
    RefundStatus,
    Session,
    SessionStatus,
    Total,
)


class TestRefundStatus:
    """Tests for refund status derivation."""

    def test_nothing_refunded(self) -> None:
        assert RefundStatus.from_amounts(1000, 0, False) == RefundStatus.NONE

    def test_partial_refund(self) -> None:
        assert RefundStatus.from_amounts(1000, 400, False) == RefundStatus.PARTIAL

    def test_full_refund(self) -> None:
        assert RefundStatus.from_amounts(1000, 1000, True) == RefundStatus.REFUNDED

    def test_full_amount_without_flag_is_partial(self) -> None:
        assert RefundStatus.from_amounts(1000, 1000, False) == RefundStatus.PARTIAL


class TestPaymentStatus:
    def test_settled(self) -> None:
        assert PaymentStatus.SUCCEEDED.is_settled()
        assert PaymentStatus.FAILED.is_settled()
        assert not PaymentStatus.PROCESSING.is_settled()


class TestAddressAndBuyer:
    def test_first_name_from_full_name(self) -> None:
        assert Address(name="  Grace Brewster Hopper ").first_name == "Grace"

    def test_first_name_missing(self) -> None:
        assert Address(name="   ").first_name is None
        assert Address().first_name is None

    def test_buyer_is_empty(self) -> None:
        assert Buyer().is_empty()
        assert not Buyer(email="a@example.com").is_empty()


class TestSession:
    """Tests for the Session aggregate."""

    def make_session(self) -> Session:
        created = datetime(2025, 10, 1, tzinfo=timezone.utc)
        return Session(
            id="cs_1",
            status=SessionStatus.READY_FOR_PAYMENT,
            currency="usd",
            line_items=[
                LineItem(
                    id="li_sku1",
                    item=ItemRef(id="sku1", quantity=2),
                    base_amount=1000,
                    discount=0,
                    subtotal=1000,
                    tax=100,
                    total=1100,
                )
            ],
            totals=[
                Total(type="subtotal", display_text="Subtotal", amount=1000),
                Total(type="total", display_text="Total", amount=1200),
            ],
            created_at=created,
            updated_at=created,
        )

    def test_total_amount(self) -> None:
        assert self.make_session().total_amount() == 1200

    def test_total_amount_without_total_row(self) -> None:
        session = self.make_session()
        session.totals = []
        assert session.total_amount() == 0

    def test_unit_amount(self) -> None:
        assert self.make_session().line_items[0].unit_amount == 500

    def test_add_message(self) -> None:
        session = self.make_session()
        session.add_message("payment_error", "Card declined")
        assert session.messages[0].type == "payment_error"
        assert session.messages[0].text == "Card declined"

    def test_to_dict_drops_absent_fields(self) -> None:
        data = self.make_session().to_dict()

        assert data["status"] == "ready_for_payment"
        assert data["created_at"] == "2025-10-01T00:00:00+00:00"
        assert data["line_items"][0]["item"] == {"id": "sku1", "quantity": 2}
        assert "order" not in data
        assert "payment_status" not in data
        assert "fulfillment_address" not in data

    def test_to_dict_serializes_enums(self) -> None:
        session = self.make_session()
        session.payment_status = PaymentStatus.SUCCEEDED
        assert session.to_dict()["payment_status"] == "succeeded"
