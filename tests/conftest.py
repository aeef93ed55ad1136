"""
Shared fixtures: every test gets its own SQLite file and a small cast of users.
"""

import pytest

from portmarket.core.db import init_db
from portmarket.core.schema import Role
from portmarket.core.subjects import create_user
from portmarket.core.tariffs import create_tariff


@pytest.fixture(autouse=True)
def test_db(tmp_path, monkeypatch):
    """Point DB_PATH at a fresh temporary database for each test."""
    db_path = tmp_path / "test_marketplace.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    monkeypatch.delenv("QUOTA_USE_TARIFF_BILLING_PERIOD", raising=False)
    monkeypatch.delenv("ATTRIBUTE_AUDIT_REVEAL", raising=False)
    init_db()
    yield db_path


@pytest.fixture
def buyer_id():
    return create_user("buyer@example.com", "Buyer", Role.BUYER)


@pytest.fixture
def seller_id():
    return create_user("seller@example.com", "Seller", Role.SELLER)


@pytest.fixture
def admin_id():
    return create_user("admin@example.com", "Admin", Role.ADMIN)


@pytest.fixture
def premium_tariff_id():
    """Tariff allowing four orders per billing period."""
    return create_tariff("Premium", 4, price_in_cents=10000, billing_period_in_months=1)
