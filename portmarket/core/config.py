"""
Runtime configuration for the marketplace core.
Values come from the environment; functions re-read it so tests can patch os.environ.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/marketplace.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Seconds a writer waits on the SQLite write lock before giving up
DB_BUSY_TIMEOUT_SEC = float(os.getenv("DB_BUSY_TIMEOUT_SEC", "30"))

# Quota engine: the resolver uses a fixed one month cadence unless this is enabled,
# in which case the tariff's billing_period_in_months drives the window length.
QUOTA_USE_TARIFF_BILLING_PERIOD = os.getenv("QUOTA_USE_TARIFF_BILLING_PERIOD", "false").lower() == "true"
DEFAULT_BILLING_PERIOD_MONTHS = 1

# Attribute approval: reveal attribute values in audit logs (never in production)
ATTRIBUTE_AUDIT_REVEAL = os.getenv("ATTRIBUTE_AUDIT_REVEAL", "false").lower() == "true"

# Version string
VERSION = "1.0.0"


def get_db_path() -> str:
    """Current database path (re-read from the environment)."""
    return os.getenv("DB_PATH", DB_PATH)


def get_busy_timeout() -> float:
    """Seconds to wait for the write lock."""
    return float(os.getenv("DB_BUSY_TIMEOUT_SEC", str(DB_BUSY_TIMEOUT_SEC)))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def use_tariff_billing_period() -> bool:
    """Whether tariffs.billing_period_in_months feeds the billing period resolver."""
    return os.getenv("QUOTA_USE_TARIFF_BILLING_PERIOD", "false").lower() == "true"


def attribute_audit_reveal() -> bool:
    return os.getenv("ATTRIBUTE_AUDIT_REVEAL", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    db_path = get_db_path()
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    try:
        if get_busy_timeout() <= 0:
            issues.append("DB_BUSY_TIMEOUT_SEC must be > 0")
    except ValueError:
        issues.append(f"Invalid DB_BUSY_TIMEOUT_SEC: {os.getenv('DB_BUSY_TIMEOUT_SEC')}")

    if get_db_path() == ":memory:":
        issues.append("DB_PATH=:memory: is not shared between connections")

    for flag in ("DEBUG", "QUOTA_USE_TARIFF_BILLING_PERIOD", "ATTRIBUTE_AUDIT_REVEAL"):
        value = os.getenv(flag)
        if value is not None and value.lower() not in ("true", "false"):
            issues.append(f"Invalid {flag}: {value} (expected true|false)")

    return issues
