"""
Quota guard tests - billing windows against the order log, rejection codes, and
the limit holding under concurrent submissions.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from portmarket.core.db import transaction
from portmarket.core.errors import (
    NoActiveTariffError,
    NotFoundError,
    QuotaExceededError,
    RoleMismatchError,
    ERR_NO_ACTIVE_TARIFF,
    ERR_ORDER_PER_MONTH_LIMIT_REACHED,
    ERR_USER_NOT_BUYER,
)
from portmarket.core.orders import create_order, list_orders
from portmarket.core.quota import authorize, place_order, quota_usage
from portmarket.core.schema import OrderStatus
from portmarket.core.tariffs import create_tariff, get_active_entry, list_entries, subscribe

NOW = datetime(2024, 4, 20, 12, 0, tzinfo=timezone.utc)
ANCHOR = NOW - timedelta(days=14)


def _import_orders(buyer_id, *timestamps, status=OrderStatus.PENDING):
    """Insert orders directly, bypassing the guard, as historical data."""
    with transaction("test.orders") as conn:
        return [create_order(conn, buyer_id, status=status, created_at=ts) for ts in timestamps]


class TestAuthorize:

    @pytest.mark.parametrize("now", [
        NOW,
        datetime(2026, 10, 19, 12, tzinfo=timezone.utc),
        datetime(2024, 2, 20, 12, tzinfo=timezone.utc),
        datetime(2023, 2, 20, 12, tzinfo=timezone.utc),
    ], ids=["april", "october", "leap-february", "february"])
    def test_limit_reached_in_current_window(self, buyer_id, premium_tariff_id, now):
        subscribe(buyer_id, premium_tariff_id, anchor=now - timedelta(days=14))
        _import_orders(buyer_id, now, now, now)
        _import_orders(buyer_id, now, status=OrderStatus.COMPLETED)
        _import_orders(buyer_id, now - timedelta(days=60))
        # just outside the window on both sides
        _import_orders(buyer_id, now - timedelta(days=14, microseconds=1), now + timedelta(days=16))

        with pytest.raises(QuotaExceededError) as exc_info:
            authorize(buyer_id, now=now)

        error = exc_info.value
        assert error.code == ERR_ORDER_PER_MONTH_LIMIT_REACHED
        assert error.context["used"] == 4
        assert error.context["limit"] == 4
        assert error.context["tariff_id"] == premium_tariff_id
        assert error.context["period_start"] == (now - timedelta(days=14)).isoformat()
        assert error.context["period_end"] == (now + timedelta(days=16)).isoformat()

    def test_no_active_tariff(self, buyer_id):
        with pytest.raises(NoActiveTariffError) as exc_info:
            authorize(buyer_id, now=NOW)
        assert exc_info.value.code == ERR_NO_ACTIVE_TARIFF
        assert exc_info.value.context == {"buyer_id": buyer_id}

    def test_accepts_below_limit(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        _import_orders(buyer_id, NOW - timedelta(days=1), NOW)

        decision = authorize(buyer_id, now=NOW)

        assert decision.used == 2
        assert decision.limit == 4
        assert decision.remaining == 2
        assert decision.window.start == datetime(2024, 4, 6, 12, tzinfo=timezone.utc)
        assert decision.window.end == datetime(2024, 5, 6, 12, tzinfo=timezone.utc)

    def test_orders_before_window_do_not_count(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        window_start = datetime(2024, 4, 6, 12, tzinfo=timezone.utc)
        _import_orders(buyer_id, *[window_start - timedelta(microseconds=1)] * 4)
        _import_orders(buyer_id, window_start)

        assert authorize(buyer_id, now=NOW).used == 1

    def test_cancelled_orders_still_count(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        _import_orders(buyer_id, NOW, NOW, status=OrderStatus.CANCELLED)
        _import_orders(buyer_id, NOW, NOW, status=OrderStatus.COMPLETED)

        with pytest.raises(QuotaExceededError):
            authorize(buyer_id, now=NOW)

    def test_zero_limit_rejects_first_order(self, buyer_id):
        tariff_id = create_tariff("Suspended", 0)
        subscribe(buyer_id, tariff_id, anchor=ANCHOR)
        with pytest.raises(QuotaExceededError):
            authorize(buyer_id, now=NOW)

    def test_window_rolls_over(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        _import_orders(buyer_id, NOW, NOW, NOW, NOW)
        next_window = datetime(2024, 5, 6, 12, tzinfo=timezone.utc)

        with pytest.raises(QuotaExceededError):
            authorize(buyer_id, now=next_window - timedelta(microseconds=1))
        assert authorize(buyer_id, now=next_window).used == 0

    def test_now_before_anchor_uses_first_window(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=NOW)
        decision = authorize(buyer_id, now=NOW - timedelta(days=3))
        assert decision.window.start == NOW

    def test_authorize_alone_reserves_nothing(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        _import_orders(buyer_id, NOW, NOW, NOW)

        assert authorize(buyer_id, now=NOW).remaining == 1
        assert authorize(buyer_id, now=NOW).remaining == 1
        assert len(list_orders(buyer_id)) == 3

        place_order(buyer_id, now=NOW)
        with pytest.raises(QuotaExceededError):
            place_order(buyer_id, now=NOW)


class TestPlaceOrder:

    def test_creates_until_limit(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)

        created = [
            place_order(buyer_id, port_ids=[1, 2], items=[{"product_id": 7, "quantity": 3}],
                        now=NOW + timedelta(minutes=i))
            for i in range(4)
        ]
        assert len(set(created)) == 4

        with pytest.raises(QuotaExceededError):
            place_order(buyer_id, port_ids=[1], now=NOW + timedelta(minutes=5))

        orders = list_orders(buyer_id)
        assert [o.order_id for o in orders] == created
        assert orders[0].port_ids == [1, 2]
        assert orders[0].items[0].quantity == 3

    def test_rejected_order_leaves_nothing_behind(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        _import_orders(buyer_id, NOW, NOW, NOW, NOW)

        with pytest.raises(QuotaExceededError):
            place_order(buyer_id, port_ids=[9], items=[{"product_id": 1, "quantity": 1}], now=NOW)
        assert len(list_orders(buyer_id)) == 4

    def test_no_tariff_creates_no_order(self, buyer_id):
        with pytest.raises(NoActiveTariffError):
            place_order(buyer_id, now=NOW)
        assert list_orders(buyer_id) == []

    def test_seller_cannot_place_orders(self, seller_id, premium_tariff_id):
        with pytest.raises(RoleMismatchError) as exc_info:
            place_order(seller_id, now=NOW)
        assert exc_info.value.code == ERR_USER_NOT_BUYER
        assert exc_info.value.context["actual_role"] == "seller"

    def test_unknown_buyer(self):
        with pytest.raises(NotFoundError):
            place_order(4242, now=NOW)

    def test_concurrent_orders_never_exceed_limit(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        workers = 12
        barrier = threading.Barrier(workers)
        accepted, rejected, unexpected = [], [], []
        lock = threading.Lock()

        def submit():
            barrier.wait()
            try:
                order_id = place_order(buyer_id, port_ids=[1], now=NOW)
            except QuotaExceededError as e:
                with lock:
                    rejected.append(e)
            except Exception as e:
                with lock:
                    unexpected.append(e)
            else:
                with lock:
                    accepted.append(order_id)

        threads = [threading.Thread(target=submit) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert unexpected == []
        assert len(accepted) == 4
        assert len(rejected) == workers - 4
        assert len(list_orders(buyer_id)) == 4


class TestBillingPeriodSetting:

    def test_fixed_monthly_window_by_default(self, buyer_id):
        yearly = create_tariff("Business", 10, price_in_cents=15000, billing_period_in_months=12)
        subscribe(buyer_id, yearly, anchor=datetime(2024, 1, 10, tzinfo=timezone.utc))

        # three 30-day periods after Jan 10 in a leap year
        decision = quota_usage(buyer_id, now=NOW)
        assert decision.window.start == datetime(2024, 4, 9, tzinfo=timezone.utc)
        assert decision.window.end == datetime(2024, 5, 9, tzinfo=timezone.utc)

    def test_tariff_period_when_enabled(self, buyer_id, monkeypatch):
        monkeypatch.setenv("QUOTA_USE_TARIFF_BILLING_PERIOD", "true")
        yearly = create_tariff("Business", 10, price_in_cents=15000, billing_period_in_months=12)
        subscribe(buyer_id, yearly, anchor=datetime(2024, 1, 10, tzinfo=timezone.utc))
        _import_orders(buyer_id, datetime(2024, 2, 1, tzinfo=timezone.utc))

        decision = quota_usage(buyer_id, now=NOW)
        assert decision.window.start == datetime(2024, 1, 10, tzinfo=timezone.utc)
        assert decision.window.end == datetime(2025, 1, 4, tzinfo=timezone.utc)
        assert decision.used == 1


class TestSubscriptions:

    def test_resubscribe_replaces_active_entry(self, buyer_id, premium_tariff_id):
        basic = create_tariff("Basic", 3, price_in_cents=5000)
        first = subscribe(buyer_id, basic, anchor=ANCHOR)
        second = subscribe(buyer_id, premium_tariff_id, anchor=NOW)

        active = get_active_entry(buyer_id)
        assert active.entry_id == second.entry_id
        assert active.tariff_id == premium_tariff_id
        assert active.billing_anchor == NOW

        entries = list_entries(buyer_id)
        assert [e.entry_id for e in entries] == [first.entry_id, second.entry_id]
        assert [e.active for e in entries] == [False, True]
        # the retired entry keeps its anchor
        assert entries[0].billing_anchor == ANCHOR

    def test_new_anchor_starts_new_window(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        _import_orders(buyer_id, NOW - timedelta(hours=1))
        subscribe(buyer_id, premium_tariff_id, anchor=NOW)
        assert quota_usage(buyer_id, now=NOW).used == 0

    def test_only_buyers_subscribe(self, seller_id, premium_tariff_id):
        with pytest.raises(RoleMismatchError):
            subscribe(seller_id, premium_tariff_id)

    def test_unknown_tariff(self, buyer_id):
        with pytest.raises(NotFoundError):
            subscribe(buyer_id, 777)
        assert get_active_entry(buyer_id) is None


class TestQuotaUsage:

    def test_usage_when_exhausted_does_not_raise(self, buyer_id, premium_tariff_id):
        subscribe(buyer_id, premium_tariff_id, anchor=ANCHOR)
        _import_orders(buyer_id, NOW, NOW, NOW, NOW, NOW)

        decision = quota_usage(buyer_id, now=NOW)
        assert decision.exhausted
        assert decision.used == 5
        assert decision.remaining == 0
        assert decision.to_dict()["period_start"] == datetime(2024, 4, 6, 12, tzinfo=timezone.utc)

    def test_usage_without_tariff(self, buyer_id):
        with pytest.raises(NoActiveTariffError):
            quota_usage(buyer_id, now=NOW)
