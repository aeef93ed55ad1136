"""
Order store - orders with their ports and items, and seller responses to them.
Writers take a connection so they run inside the caller's transaction.
"""

import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from .db import get_db, transaction
from .errors import NotFoundError, ValidationError
from .roles import require_buyer, require_seller
from .schema import (
    Order, OrderItem, OrderResponse, OrderStatus,
    format_ts, parse_ts, utcnow
)
from util.logging import logger

ItemLike = Union[OrderItem, Dict[str, Any]]


def _normalize_items(items: Iterable[ItemLike]) -> List[OrderItem]:
    normalized = []
    seen = set()
    for item in items:
        if isinstance(item, dict):
            item = OrderItem(product_id=item.get("product_id"), quantity=item.get("quantity"))
        if not isinstance(item.product_id, int) or not isinstance(item.quantity, int):
            raise ValidationError(f"Invalid order item: {item}")
        if item.quantity <= 0:
            raise ValidationError(f"Quantity must be positive for product {item.product_id}",
                                  product_id=item.product_id)
        if item.product_id in seen:
            raise ValidationError(f"Duplicate product {item.product_id} in order",
                                  product_id=item.product_id)
        seen.add(item.product_id)
        normalized.append(item)
    return normalized


def _normalize_ports(port_ids: Iterable[int]) -> List[int]:
    ports = list(port_ids)
    if len(set(ports)) != len(ports):
        raise ValidationError("Duplicate port in order", port_ids=ports)
    if any(not isinstance(p, int) for p in ports):
        raise ValidationError("Port ids must be integers", port_ids=ports)
    return ports


def count_in_window(conn: sqlite3.Connection, buyer_id: int, start: datetime, end: datetime) -> int:
    """Orders of ``buyer_id`` created in [start, end), whatever their status."""
    row = conn.execute(
        "SELECT COUNT(*) FROM orders WHERE buyer_id = ? AND created_at >= ? AND created_at < ?",
        (buyer_id, format_ts(start), format_ts(end))
    ).fetchone()
    return row[0]


def create_order(conn: sqlite3.Connection, buyer_id: int, port_ids: Iterable[int] = (),
                 items: Iterable[ItemLike] = (), status=OrderStatus.PENDING,
                 created_at: Optional[datetime] = None) -> int:
    """Insert an order. Quota is not checked here; see quota.place_order."""
    ports = _normalize_ports(port_ids)
    order_items = _normalize_items(items)
    status = OrderStatus(status)

    require_buyer(conn, buyer_id)
    cursor = conn.execute(
        "INSERT INTO orders (buyer_id, status, created_at) VALUES (?, ?, ?)",
        (buyer_id, status.value, format_ts(created_at or utcnow()))
    )
    order_id = cursor.lastrowid

    conn.executemany(
        "INSERT INTO order_ports (order_id, port_id) VALUES (?, ?)",
        [(order_id, port_id) for port_id in ports]
    )
    conn.executemany(
        "INSERT INTO order_items (order_id, product_id, quantity) VALUES (?, ?, ?)",
        [(order_id, item.product_id, item.quantity) for item in order_items]
    )
    return order_id


def fetch_order(conn: sqlite3.Connection, order_id: int) -> Optional[Order]:
    row = conn.execute(
        "SELECT order_id, buyer_id, status, created_at FROM orders WHERE order_id = ?",
        (order_id,)
    ).fetchone()
    if not row:
        return None

    ports = conn.execute(
        "SELECT port_id FROM order_ports WHERE order_id = ? ORDER BY port_id", (order_id,)
    ).fetchall()
    items = conn.execute(
        "SELECT product_id, quantity FROM order_items WHERE order_id = ? ORDER BY product_id", (order_id,)
    ).fetchall()
    return Order(
        order_id=row[0],
        buyer_id=row[1],
        status=OrderStatus(row[2]),
        created_at=parse_ts(row[3]),
        port_ids=[p[0] for p in ports],
        items=[OrderItem(product_id=i[0], quantity=i[1]) for i in items]
    )


def get_order(order_id: int) -> Order:
    with get_db() as conn:
        order = fetch_order(conn, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
    return order


def list_orders(buyer_id: int, since: Optional[datetime] = None, until: Optional[datetime] = None) -> List[Order]:
    query = "SELECT order_id FROM orders WHERE buyer_id = ?"
    params: List[Any] = [buyer_id]
    if since is not None:
        query += " AND created_at >= ?"
        params.append(format_ts(since))
    if until is not None:
        query += " AND created_at < ?"
        params.append(format_ts(until))
    query += " ORDER BY created_at, order_id"

    with get_db() as conn:
        ids = [row[0] for row in conn.execute(query, params).fetchall()]
        return [fetch_order(conn, order_id) for order_id in ids]


def set_order_status(order_id: int, status) -> Order:
    status = OrderStatus(status)
    with transaction("orders.set_status") as conn:
        cursor = conn.execute("UPDATE orders SET status = ? WHERE order_id = ?", (status.value, order_id))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        order = fetch_order(conn, order_id)

    logger.log_operation("orders.status", status.value, {"order_id": order_id, "buyer_id": order.buyer_id})
    return order


def create_order_response(order_id: int, seller_id: int, items: Iterable[Dict[str, int]] = (),
                          now: Optional[datetime] = None) -> OrderResponse:
    """Record a seller's response to an order with suggested quantities."""
    suggestions = []
    for item in items:
        product_id = item.get("product_id")
        quantity = item.get("suggested_quantity")
        if not isinstance(product_id, int) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError(f"Invalid response item: {item}")
        suggestions.append({"product_id": product_id, "suggested_quantity": quantity})

    created_at = now or utcnow()
    with transaction("orders.respond") as conn:
        require_seller(conn, seller_id)
        order = fetch_order(conn, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        require_buyer(conn, order.buyer_id)

        cursor = conn.execute(
            "INSERT INTO order_responses (order_id, seller_id, buyer_id, created_at) VALUES (?, ?, ?, ?)",
            (order_id, seller_id, order.buyer_id, format_ts(created_at))
        )
        response_id = cursor.lastrowid
        conn.executemany(
            "INSERT INTO response_items (response_id, product_id, suggested_quantity) VALUES (?, ?, ?)",
            [(response_id, s["product_id"], s["suggested_quantity"]) for s in suggestions]
        )

    logger.log_operation("orders.response", "created", {
        "order_id": order_id, "seller_id": seller_id, "response_id": response_id
    })
    return OrderResponse(
        response_id=response_id,
        order_id=order_id,
        seller_id=seller_id,
        buyer_id=order.buyer_id,
        created_at=parse_ts(format_ts(created_at)),
        items=suggestions
    )
