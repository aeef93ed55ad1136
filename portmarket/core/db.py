"""
SQLite storage for the marketplace core.
Connections are per unit of work; writes go through transaction(), which takes the
write lock up front (BEGIN IMMEDIATE) so check-then-act sequences are serialized.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from .config import get_db_path, get_busy_timeout, ensure_db_directory
from .errors import MarketplaceError, ConflictError, TransientError, ValidationError
from util.logging import logger

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS users (
        user_id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        phone TEXT,
        status TEXT CHECK (status IS NULL OR status IN ('verified', 'banned')),
        role TEXT NOT NULL CHECK (role IN ('admin', 'buyer', 'seller')),
        approved_snapshot_id INTEGER REFERENCES user_attribute_snapshots(snapshot_id)
    );

    -- Append-only log of dynamic user attributes; rows are never updated except approved_at
    CREATE TABLE IF NOT EXISTS user_attribute_snapshots (
        snapshot_id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(user_id),
        fields TEXT NOT NULL,
        created_at TEXT NOT NULL,
        approved_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_snapshots_user_created
        ON user_attribute_snapshots (user_id, created_at, snapshot_id);

    CREATE TABLE IF NOT EXISTS tariffs (
        tariff_id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        max_orders_per_month INTEGER NOT NULL CHECK (max_orders_per_month >= 0),
        price_in_cents INTEGER,
        billing_period_in_months INTEGER CHECK (billing_period_in_months IS NULL OR billing_period_in_months >= 1)
    );

    CREATE TABLE IF NOT EXISTS buyer_tariffs (
        entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
        buyer_id INTEGER NOT NULL REFERENCES users(user_id),
        tariff_id INTEGER NOT NULL REFERENCES tariffs(tariff_id),
        billing_anchor TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0, 1))
    );

    CREATE INDEX IF NOT EXISTS idx_buyer_tariffs_buyer ON buyer_tariffs (buyer_id, tariff_id);

    -- At most one active subscription per buyer
    CREATE UNIQUE INDEX IF NOT EXISTS uq_buyer_tariffs_active
        ON buyer_tariffs (buyer_id) WHERE active = 1;

    CREATE TABLE IF NOT EXISTS orders (
        order_id INTEGER PRIMARY KEY AUTOINCREMENT,
        buyer_id INTEGER NOT NULL REFERENCES users(user_id),
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'completed', 'cancelled')),
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_orders_buyer_created ON orders (buyer_id, created_at);

    CREATE TABLE IF NOT EXISTS order_ports (
        order_id INTEGER NOT NULL REFERENCES orders(order_id),
        port_id INTEGER NOT NULL,
        PRIMARY KEY (order_id, port_id)
    );

    CREATE TABLE IF NOT EXISTS order_items (
        order_id INTEGER NOT NULL REFERENCES orders(order_id),
        product_id INTEGER NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        PRIMARY KEY (order_id, product_id)
    );

    CREATE TABLE IF NOT EXISTS order_responses (
        response_id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL REFERENCES orders(order_id),
        seller_id INTEGER NOT NULL REFERENCES users(user_id),
        buyer_id INTEGER NOT NULL REFERENCES users(user_id),
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS response_items (
        response_item_id INTEGER PRIMARY KEY AUTOINCREMENT,
        response_id INTEGER NOT NULL REFERENCES order_responses(response_id),
        product_id INTEGER NOT NULL,
        suggested_quantity INTEGER NOT NULL CHECK (suggested_quantity >= 0)
    );
'''

REQUIRED_TABLES = [
    'users', 'user_attribute_snapshots', 'tariffs', 'buyer_tariffs',
    'orders', 'order_ports', 'order_items', 'order_responses', 'response_items'
]


def _connect() -> sqlite3.Connection:
    timeout = get_busy_timeout()
    try:
        conn = sqlite3.connect(
            get_db_path(),
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )
    except sqlite3.OperationalError as e:
        raise TransientError(f"Cannot open database: {e}") from e
    conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# Constraints whose violation means two writers raced; everything else is bad input
CONFLICT_CONSTRAINTS = ("buyer_tariffs.buyer_id",)

_TRANSIENT_MARKERS = ("locked", "busy")


def _translate(exc: sqlite3.Error, operation: str) -> Optional[MarketplaceError]:
    """Map a sqlite failure onto the taxonomy; None means re-raise it unchanged."""
    message = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        if any(constraint in message for constraint in CONFLICT_CONSTRAINTS):
            logger.log_store_failure(operation, ConflictError.code, {"error": message})
            return ConflictError(f"Concurrent write conflict: {message}")
        logger.log_store_failure(operation, ValidationError.code, {"error": message})
        if "UNIQUE" in message:
            return ValidationError(f"Duplicate value: {message}", constraint=message.split(": ", 1)[-1])
        return ValidationError(f"Constraint violated: {message}")
    if isinstance(exc, sqlite3.OperationalError) and any(m in message.lower() for m in _TRANSIENT_MARKERS):
        logger.log_store_failure(operation, TransientError.code, {"error": message})
        return TransientError(f"Store unavailable: {message}")
    logger.log_store_failure(operation, "unexpected", {"error": message})
    return None


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection (autocommit, for reads and DDL)."""
    conn = _connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(operation: str = "write") -> Generator[sqlite3.Connection, None, None]:
    """Run a unit of work under the database write lock.

    Commits on success. Any exception rolls back everything written inside the
    block. Racing writers surface as ConflictError, other constraint violations
    as ValidationError and lock timeouts as TransientError; business errors and
    any other sqlite error propagate unchanged.
    """
    conn = _connect()
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            translated = _translate(e, operation)
            if translated is None:
                raise
            raise translated from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            translated = _translate(e, operation)
            if translated is None:
                raise
            raise translated from e
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    ensure_db_directory()
    with get_db() as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except (sqlite3.Error, TransientError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
