from decimal import Decimal

import pytest

from marketplace.errors import InvariantViolation
from marketplace.orders.models import (
    Order,
    OrderItem,
    OrderStatus,
    TERMINAL_STATUSES,
    build_new_order_row,
    can_transition,
    check_total,
    parse_status,
)

ADDRESS = {"address": "KN 5 Rd", "city": "Kigali", "country": "Rwanda"}


def _items():
    return [
        OrderItem(product_id="A", quantity=2, unit_price=Decimal("15000"), supplier_id="sup-1"),
        OrderItem(product_id="B", quantity=3, unit_price=Decimal("2000"), supplier_id="sup-2"),
    ]


@pytest.mark.parametrize("current,target", [
    (OrderStatus.PENDING, OrderStatus.PAYMENT_PENDING),
    (OrderStatus.PENDING, OrderStatus.PAID),
    (OrderStatus.PAYMENT_PENDING, OrderStatus.PAID),
    (OrderStatus.PAYMENT_PENDING, OrderStatus.FAILED),
    (OrderStatus.PAID, OrderStatus.SHIPPED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
    (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (OrderStatus.PAID, OrderStatus.FAILED),
    (OrderStatus.PAID, OrderStatus.PENDING),
    (OrderStatus.PENDING, OrderStatus.SHIPPED),
    (OrderStatus.PAYMENT_PENDING, OrderStatus.DELIVERED),
])
def test_forbidden_transitions(current, target):
    assert not can_transition(current, target)


def test_terminal_states_have_no_exit():
    for status in TERMINAL_STATUSES:
        assert not any(can_transition(status, target) for target in OrderStatus)


def test_parse_status():
    assert parse_status(" Paid ") == OrderStatus.PAID
    assert parse_status("processing") is None
    assert parse_status(None) is None


def test_build_new_order_row_total_and_status():
    row = build_new_order_row(
        customer_id="u1",
        items=_items(),
        shipping_address=ADDRESS,
        phone_number="250788123456",
        payment_method="mobile-money",
        provider="MTN",
        checkout_key="key-1",
    )
    assert row["total"] == "36000.00"
    assert row["status"] == "pending"
    assert row["checkout_key"] == "key-1"
    assert row["items"][0]["unit_price"] == "15000.00"


def test_build_new_order_row_requires_items_and_address():
    with pytest.raises(InvariantViolation):
        build_new_order_row(
            customer_id="u1", items=[], shipping_address=ADDRESS,
            phone_number="250788123456", payment_method="mobile-money",
        )
    with pytest.raises(InvariantViolation):
        build_new_order_row(
            customer_id="u1", items=_items(), shipping_address={"address": "KN 5 Rd", "city": " "},
            phone_number="250788123456", payment_method="mobile-money",
        )


def test_check_total_detects_mismatch():
    row = {"id": "o1", "items": [i.to_row() for i in _items()], "total": "35999.00"}
    with pytest.raises(InvariantViolation):
        check_total(row)


def test_order_from_row_unknown_status_is_invariant_violation():
    with pytest.raises(InvariantViolation):
        Order.from_row({"id": "o1", "customer_id": "u1", "items": [], "total": "0", "status": "processing"})


def test_order_supplier_ids():
    row = build_new_order_row(
        customer_id="u1", items=_items(), shipping_address=ADDRESS,
        phone_number="250788123456", payment_method="mobile-money",
    )
    row.update({"id": "o1"})
    order = Order.from_row(row)
    assert order.supplier_ids() == {"sup-1", "sup-2"}
    assert order.to_dict()["total"] == "36000.00"
