"""
Typed records for the marketplace core.
Rows come out of SQLite as tuples and are converted here at the storage boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    ADMIN = "admin"
    BUYER = "buyer"
    SELLER = "seller"


class UserStatus(str, Enum):
    VERIFIED = "verified"
    BANNED = "banned"


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SnapshotStatus(str, Enum):
    """Status of an attribute snapshot relative to its subject's approval pointer."""
    CURRENT = "current"
    PENDING = "pending"
    OUTDATED = "outdated"
    PREVIOUSLY_APPROVED = "previously_approved"


TIMESTAMP_FORMAT_TIMESPEC = "microseconds"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_ts(dt: datetime) -> str:
    """Fixed-width ISO timestamp so SQLite string comparison matches time order."""
    return to_utc(dt).isoformat(timespec=TIMESTAMP_FORMAT_TIMESPEC)


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return to_utc(datetime.fromisoformat(value))


@dataclass
class Subject:
    user_id: int
    email: str
    name: str
    role: Role
    phone: Optional[str] = None
    status: Optional[UserStatus] = None
    approved_snapshot_id: Optional[int] = None

    def __post_init__(self):
        self.role = Role(self.role)
        if self.status is not None:
            self.status = UserStatus(self.status)


@dataclass
class AttributeSnapshot:
    snapshot_id: int
    user_id: int
    fields: Dict[str, Any]
    created_at: datetime
    approved_at: Optional[datetime] = None

    def sort_key(self):
        # created_at orders the log; the monotonic id breaks same-instant ties
        return (self.created_at, self.snapshot_id)


@dataclass
class ClassifiedSnapshot:
    snapshot: AttributeSnapshot
    status: SnapshotStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot.snapshot_id,
            "fields": self.snapshot.fields,
            "created_at": self.snapshot.created_at,
            "approved_at": self.snapshot.approved_at,
            "status": self.status.value,
        }


@dataclass
class Tariff:
    tariff_id: int
    name: str
    max_orders_per_month: int
    price_in_cents: Optional[int] = None
    billing_period_in_months: Optional[int] = None


@dataclass
class QuotaLedgerEntry:
    entry_id: int
    buyer_id: int
    tariff_id: int
    billing_anchor: datetime
    active: bool = True


@dataclass
class OrderItem:
    product_id: int
    quantity: int


@dataclass
class Order:
    order_id: int
    buyer_id: int
    status: OrderStatus
    created_at: datetime
    port_ids: List[int] = field(default_factory=list)
    items: List[OrderItem] = field(default_factory=list)

    def __post_init__(self):
        self.status = OrderStatus(self.status)


@dataclass
class OrderResponse:
    response_id: int
    order_id: int
    seller_id: int
    buyer_id: int
    created_at: datetime
    items: List[Dict[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class BillingWindow:
    """Half-open interval [start, end) of one billing period."""
    start: datetime
    end: datetime
    index: int = 0

    def contains(self, moment: datetime) -> bool:
        return self.start <= to_utc(moment) < self.end


@dataclass
class QuotaDecision:
    buyer_id: int
    tariff_id: int
    window: BillingWindow
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buyer_id": self.buyer_id,
            "tariff_id": self.tariff_id,
            "period_start": self.window.start,
            "period_end": self.window.end,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
        }
