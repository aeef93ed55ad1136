"""
Demo data for local development: one buyer, one seller, one admin, the three standard
tariffs, an approved and a pending attribute snapshot, and a partly used quota.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from .approval import approve
from .attributes import append_snapshot
from .billing import period_length
from .db import init_db, transaction
from .orders import create_order, create_order_response
from .schema import OrderStatus, Role, utcnow
from .subjects import create_user
from .tariffs import create_tariff, subscribe

DEMO_TARIFFS = [
    # name, max_orders_per_month, price_in_cents, billing_period_in_months
    ("Basic", 3, 5000, 1),
    ("Premium", 4, 10000, 1),
    ("Business", 10, 15000, 12),
]


def seed_demo_data(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Populate an empty database; returns the ids that were created."""
    now = now or utcnow()
    init_db()

    buyer_id = create_user("user1@example.com", "User One", Role.BUYER, phone="123456789")
    seller_id = create_user("user2@example.com", "User Two", Role.SELLER, phone="987654321")
    admin_id = create_user("user3@example.com", "User Three", Role.ADMIN)

    first_snapshot = append_snapshot(buyer_id, {"ssn": "123456789"}, now=now - timedelta(minutes=2))
    approve(buyer_id, first_snapshot, now=now - timedelta(minutes=1), actor_id=admin_id)
    pending_snapshot = append_snapshot(
        buyer_id,
        {"ssn": "123456789", "avatar_url": "https://example.com/avatar.jpg"},
        now=now
    )

    tariff_ids = {name: create_tariff(name, limit, price, period) for name, limit, price, period in DEMO_TARIFFS}
    subscribe(buyer_id, tariff_ids["Premium"], anchor=now - timedelta(days=14))

    # Historical orders are imported directly; they predate quota enforcement
    order_ids = []
    with transaction("seed.orders") as conn:
        order_ids.append(create_order(conn, buyer_id, [1, 2], [{"product_id": 1, "quantity": 100},
                                                              {"product_id": 2, "quantity": 50}],
                                      created_at=now))
        order_ids.append(create_order(conn, buyer_id, [3], [{"product_id": 3, "quantity": 10}], created_at=now))
        order_ids.append(create_order(conn, buyer_id, [1], [{"product_id": 1, "quantity": 200}], created_at=now))
        order_ids.append(create_order(conn, buyer_id, status=OrderStatus.COMPLETED,
                                      created_at=now - timedelta(days=2)))
        order_ids.append(create_order(conn, buyer_id, created_at=now - period_length(2)))

    create_order_response(order_ids[0], seller_id,
                          [{"product_id": 1, "suggested_quantity": 120},
                           {"product_id": 2, "suggested_quantity": 60}], now=now)
    create_order_response(order_ids[1], seller_id,
                          [{"product_id": 3, "suggested_quantity": 15}], now=now - timedelta(days=1))

    return {
        "buyer_id": buyer_id,
        "seller_id": seller_id,
        "admin_id": admin_id,
        "approved_snapshot_id": first_snapshot,
        "pending_snapshot_id": pending_snapshot,
        "tariff_ids": tariff_ids,
        "order_ids": order_ids,
    }
