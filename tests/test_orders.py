"""
Order store tests: window counting, validation, status changes and seller responses.
"""

from datetime import datetime, timedelta, timezone

import pytest

from portmarket.core.db import get_db, transaction
from portmarket.core.errors import (
    NotFoundError, RoleMismatchError, ValidationError,
    ERR_USER_NOT_BUYER, ERR_USER_NOT_SELLER
)
from portmarket.core.orders import (
    count_in_window,
    create_order,
    create_order_response,
    get_order,
    list_orders,
    set_order_status,
)
from portmarket.core.schema import OrderItem, OrderStatus

T0 = datetime(2024, 4, 6, 12, tzinfo=timezone.utc)
T1 = datetime(2024, 5, 6, 12, tzinfo=timezone.utc)


def _order(buyer_id, **kwargs):
    with transaction("test.orders") as conn:
        return create_order(conn, buyer_id, **kwargs)


class TestCountInWindow:

    def test_half_open_interval(self, buyer_id):
        _order(buyer_id, created_at=T0 - timedelta(microseconds=1))
        _order(buyer_id, created_at=T0)
        _order(buyer_id, created_at=T1 - timedelta(microseconds=1))
        _order(buyer_id, created_at=T1)

        with get_db() as conn:
            assert count_in_window(conn, buyer_id, T0, T1) == 2

    def test_other_buyers_not_counted(self, buyer_id):
        from portmarket.core.schema import Role
        from portmarket.core.subjects import create_user

        other = create_user("other@example.com", "Other Buyer", Role.BUYER)
        _order(buyer_id, created_at=T0)
        _order(other, created_at=T0)

        with get_db() as conn:
            assert count_in_window(conn, buyer_id, T0, T1) == 1

    def test_non_utc_bounds(self, buyer_id):
        _order(buyer_id, created_at=T0)
        plus_five = timezone(timedelta(hours=5))
        start = T0.astimezone(plus_five)
        with get_db() as conn:
            assert count_in_window(conn, buyer_id, start, start + timedelta(days=1)) == 1


class TestCreateOrder:

    def test_ports_and_items_stored(self, buyer_id):
        order_id = _order(buyer_id, port_ids=[3, 1], items=[
            {"product_id": 1, "quantity": 100},
            OrderItem(product_id=2, quantity=50),
        ], created_at=T0)

        order = get_order(order_id)
        assert order.buyer_id == buyer_id
        assert order.status == OrderStatus.PENDING
        assert order.created_at == T0
        assert order.port_ids == [1, 3]
        assert order.items == [OrderItem(1, 100), OrderItem(2, 50)]

    @pytest.mark.parametrize("items", [
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": -3}],
        [{"product_id": 1, "quantity": 1}, {"product_id": 1, "quantity": 2}],
        [{"product_id": "1", "quantity": 1}],
        [{"quantity": 1}],
    ])
    def test_invalid_items(self, buyer_id, items):
        with pytest.raises(ValidationError):
            _order(buyer_id, items=items)
        assert list_orders(buyer_id) == []

    def test_duplicate_ports(self, buyer_id):
        with pytest.raises(ValidationError):
            _order(buyer_id, port_ids=[1, 1])

    def test_seller_cannot_own_order(self, seller_id):
        with pytest.raises(RoleMismatchError) as exc_info:
            _order(seller_id)
        assert exc_info.value.code == ERR_USER_NOT_BUYER

    def test_list_orders_range(self, buyer_id):
        first = _order(buyer_id, created_at=T0)
        second = _order(buyer_id, created_at=T0 + timedelta(days=3))
        _order(buyer_id, created_at=T1)

        assert [o.order_id for o in list_orders(buyer_id, since=T0, until=T1)] == [first, second]
        assert len(list_orders(buyer_id, since=T1)) == 1


class TestOrderStatus:

    def test_set_status(self, buyer_id):
        order_id = _order(buyer_id, created_at=T0)
        order = set_order_status(order_id, "completed")
        assert order.status == OrderStatus.COMPLETED
        assert get_order(order_id).status == OrderStatus.COMPLETED

    def test_unknown_status(self, buyer_id):
        order_id = _order(buyer_id)
        with pytest.raises(ValueError):
            set_order_status(order_id, "shipped")

    def test_unknown_order(self):
        with pytest.raises(NotFoundError):
            set_order_status(999, OrderStatus.CANCELLED)
        with pytest.raises(NotFoundError):
            get_order(999)


class TestOrderResponses:

    def test_seller_response(self, buyer_id, seller_id):
        order_id = _order(buyer_id, items=[{"product_id": 1, "quantity": 100}], created_at=T0)

        response = create_order_response(order_id, seller_id, [
            {"product_id": 1, "suggested_quantity": 120}
        ], now=T0 + timedelta(hours=2))

        assert response.order_id == order_id
        assert response.buyer_id == buyer_id
        assert response.seller_id == seller_id
        assert response.created_at == T0 + timedelta(hours=2)
        assert response.items == [{"product_id": 1, "suggested_quantity": 120}]

    def test_buyer_cannot_respond(self, buyer_id):
        order_id = _order(buyer_id)
        with pytest.raises(RoleMismatchError) as exc_info:
            create_order_response(order_id, buyer_id)
        assert exc_info.value.code == ERR_USER_NOT_SELLER

    def test_response_to_unknown_order(self, seller_id):
        with pytest.raises(NotFoundError):
            create_order_response(31337, seller_id)

    def test_invalid_suggestion(self, buyer_id, seller_id):
        order_id = _order(buyer_id)
        with pytest.raises(ValidationError):
            create_order_response(order_id, seller_id, [{"product_id": 1, "suggested_quantity": -1}])
