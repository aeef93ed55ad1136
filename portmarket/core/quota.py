"""
Quota guard - caps the number of orders a buyer may place per billing period.

place_order() runs the whole check-then-insert sequence in one BEGIN IMMEDIATE
transaction. Concurrent submissions for the same buyer therefore see each other's
orders, and the tariff limit holds under any interleaving.
"""

import sqlite3
from datetime import datetime
from typing import Iterable, Optional

from .billing import resolve_period
from .config import use_tariff_billing_period, DEFAULT_BILLING_PERIOD_MONTHS
from .db import get_db, transaction
from .errors import NoActiveTariffError, QuotaExceededError
from .orders import count_in_window, create_order, ItemLike
from .roles import require_buyer
from .schema import QuotaDecision, Tariff, format_ts, utcnow
from .tariffs import fetch_active_entry, require_tariff
from util.logging import logger


def billing_period_months(tariff: Tariff) -> int:
    """Window length for a tariff. Fixed at one month unless tariff periods are enabled."""
    if use_tariff_billing_period() and tariff.billing_period_in_months:
        return tariff.billing_period_in_months
    return DEFAULT_BILLING_PERIOD_MONTHS


def evaluate(conn: sqlite3.Connection, buyer_id: int, now: datetime) -> QuotaDecision:
    """Current usage of ``buyer_id``; raises NoActiveTariffError without a subscription."""
    entry = fetch_active_entry(conn, buyer_id)
    if entry is None:
        raise NoActiveTariffError(f"Buyer {buyer_id} has no active tariff", buyer_id=buyer_id)

    tariff = require_tariff(conn, entry.tariff_id)
    window = resolve_period(entry.billing_anchor, now, billing_period_months(tariff))
    used = count_in_window(conn, buyer_id, window.start, window.end)

    return QuotaDecision(
        buyer_id=buyer_id,
        tariff_id=tariff.tariff_id,
        window=window,
        used=used,
        limit=tariff.max_orders_per_month
    )


def authorize(buyer_id: int, now: Optional[datetime] = None,
              conn: Optional[sqlite3.Connection] = None) -> QuotaDecision:
    """Accept or reject one more order for ``buyer_id`` at ``now``.

    Without ``conn`` this is an advisory read: it reserves nothing, so another
    writer may take the last slot before the caller inserts its order. Only
    place_order, or a caller that passes the connection of an open transaction()
    and creates the order on it before committing, is safe against racing
    submissions.
    """
    now = now or utcnow()
    if conn is None:
        with get_db() as read_conn:
            decision = evaluate(read_conn, buyer_id, now)
    else:
        decision = evaluate(conn, buyer_id, now)

    outcome = "rejected" if decision.exhausted else "accepted"
    logger.log_quota_decision(
        buyer_id, outcome, decision.used, decision.limit,
        format_ts(decision.window.start), format_ts(decision.window.end),
        tariff_id=decision.tariff_id
    )

    if decision.exhausted:
        raise QuotaExceededError(
            f"Buyer {buyer_id} reached {decision.limit} orders for the period "
            f"starting {decision.window.start.isoformat()}",
            buyer_id=buyer_id,
            tariff_id=decision.tariff_id,
            used=decision.used,
            limit=decision.limit,
            period_start=decision.window.start.isoformat(),
            period_end=decision.window.end.isoformat()
        )
    return decision


def place_order(buyer_id: int, port_ids: Iterable[int] = (), items: Iterable[ItemLike] = (),
                now: Optional[datetime] = None) -> int:
    """Authorize and create an order atomically; return the new order id."""
    with transaction("orders.create") as conn:
        now = now or utcnow()
        require_buyer(conn, buyer_id)
        authorize(buyer_id, now=now, conn=conn)
        order_id = create_order(conn, buyer_id, port_ids, items, created_at=now)

    logger.log_operation("orders.create", "created", {"order_id": order_id, "buyer_id": buyer_id})
    return order_id


def quota_usage(buyer_id: int, now: Optional[datetime] = None) -> QuotaDecision:
    """Read-only view of the current billing window; never raises QuotaExceededError."""
    with get_db() as conn:
        require_buyer(conn, buyer_id)
        return evaluate(conn, buyer_id, now or utcnow())
