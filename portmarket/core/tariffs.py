"""
Tariff catalog and per-buyer quota ledger.

A buyer holds at most one active ledger entry. Subscribing again (to the same or a
different tariff) retires the previous entry and starts a new one with its own
billing anchor; anchors are never rewritten.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional

from .db import get_db, transaction
from .errors import NotFoundError, ValidationError
from .roles import require_buyer
from .schema import Tariff, QuotaLedgerEntry, format_ts, parse_ts, utcnow
from util.logging import audit_event

_TARIFF_COLUMNS = "tariff_id, name, max_orders_per_month, price_in_cents, billing_period_in_months"
_ENTRY_COLUMNS = "entry_id, buyer_id, tariff_id, billing_anchor, active"


def _row_to_tariff(row) -> Tariff:
    return Tariff(*row)


def _row_to_entry(row) -> QuotaLedgerEntry:
    entry_id, buyer_id, tariff_id, billing_anchor, active = row
    return QuotaLedgerEntry(
        entry_id=entry_id,
        buyer_id=buyer_id,
        tariff_id=tariff_id,
        billing_anchor=parse_ts(billing_anchor),
        active=bool(active)
    )


def create_tariff(name: str, max_orders_per_month: int, price_in_cents: Optional[int] = None,
                  billing_period_in_months: Optional[int] = 1) -> int:
    if not name or not name.strip():
        raise ValidationError("tariff name cannot be empty")
    if max_orders_per_month is None or max_orders_per_month < 0:
        raise ValidationError(f"max_orders_per_month must be >= 0: {max_orders_per_month}")
    if billing_period_in_months is not None and billing_period_in_months < 1:
        raise ValidationError(f"billing_period_in_months must be >= 1: {billing_period_in_months}")

    with transaction("tariffs.create") as conn:
        cursor = conn.execute(
            "INSERT INTO tariffs (name, max_orders_per_month, price_in_cents, billing_period_in_months) "
            "VALUES (?, ?, ?, ?)",
            (name.strip(), max_orders_per_month, price_in_cents, billing_period_in_months)
        )
        return cursor.lastrowid


def fetch_tariff(conn: sqlite3.Connection, tariff_id: int) -> Optional[Tariff]:
    row = conn.execute(f"SELECT {_TARIFF_COLUMNS} FROM tariffs WHERE tariff_id = ?", (tariff_id,)).fetchone()
    return _row_to_tariff(row) if row else None


def require_tariff(conn: sqlite3.Connection, tariff_id: int) -> Tariff:
    tariff = fetch_tariff(conn, tariff_id)
    if tariff is None:
        raise NotFoundError(f"Tariff {tariff_id} not found", tariff_id=tariff_id)
    return tariff


def get_tariff(tariff_id: int) -> Tariff:
    with get_db() as conn:
        return require_tariff(conn, tariff_id)


def list_tariffs() -> List[Tariff]:
    with get_db() as conn:
        rows = conn.execute(f"SELECT {_TARIFF_COLUMNS} FROM tariffs ORDER BY tariff_id").fetchall()
    return [_row_to_tariff(row) for row in rows]


def subscribe(buyer_id: int, tariff_id: int, anchor: Optional[datetime] = None) -> QuotaLedgerEntry:
    """Start a subscription for ``buyer_id``; the billing anchor defaults to now."""
    billing_anchor = anchor or utcnow()

    with transaction("tariffs.subscribe") as conn:
        require_buyer(conn, buyer_id)
        require_tariff(conn, tariff_id)
        previous = fetch_active_entry(conn, buyer_id)
        conn.execute("UPDATE buyer_tariffs SET active = 0 WHERE buyer_id = ? AND active = 1", (buyer_id,))
        cursor = conn.execute(
            "INSERT INTO buyer_tariffs (buyer_id, tariff_id, billing_anchor, active) VALUES (?, ?, ?, 1)",
            (buyer_id, tariff_id, format_ts(billing_anchor))
        )
        entry_id = cursor.lastrowid

    audit_event("subscription.started", {
        "buyer_id": buyer_id,
        "tariff_id": tariff_id,
        "entry_id": entry_id,
        "previous_entry_id": previous.entry_id if previous else None
    })
    return QuotaLedgerEntry(
        entry_id=entry_id,
        buyer_id=buyer_id,
        tariff_id=tariff_id,
        billing_anchor=parse_ts(format_ts(billing_anchor)),
        active=True
    )


def fetch_active_entry(conn: sqlite3.Connection, buyer_id: int) -> Optional[QuotaLedgerEntry]:
    row = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM buyer_tariffs WHERE buyer_id = ? AND active = 1",
        (buyer_id,)
    ).fetchone()
    return _row_to_entry(row) if row else None


def get_active_entry(buyer_id: int) -> Optional[QuotaLedgerEntry]:
    with get_db() as conn:
        return fetch_active_entry(conn, buyer_id)


def list_entries(buyer_id: int) -> List[QuotaLedgerEntry]:
    """All ledger entries of a buyer, oldest first, including retired ones."""
    with get_db() as conn:
        rows = conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM buyer_tariffs WHERE buyer_id = ? ORDER BY entry_id",
            (buyer_id,)
        ).fetchall()
    return [_row_to_entry(row) for row in rows]
