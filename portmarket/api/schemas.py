"""
Request/response models for the marketplace HTTP API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..core.schema import Role, UserStatus, OrderStatus, SnapshotStatus


class UserCreateRequest(BaseModel):
    email: str
    name: str
    role: Role
    phone: Optional[str] = None
    status: Optional[UserStatus] = UserStatus.VERIFIED

    @field_validator('email')
    @classmethod
    def email_must_look_valid(cls, v):
        if '@' not in v or not v.strip():
            raise ValueError('email must contain @')
        return v.strip()

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v

    @field_validator('phone')
    @classmethod
    def phone_length(cls, v):
        if v is not None and len(v) > 15:
            raise ValueError('phone must be at most 15 characters')
        return v


class UserResponse(BaseModel):
    user_id: int
    email: str
    name: str
    role: Role
    phone: Optional[str] = None
    status: Optional[UserStatus] = None
    approved_snapshot_id: Optional[int] = None
    approved_fields: Optional[Dict[str, Any]] = None


class AttributeAppendRequest(BaseModel):
    fields: Dict[str, Any]

    @field_validator('fields')
    @classmethod
    def field_names_must_not_be_empty(cls, v):
        for key in v:
            if not key.strip():
                raise ValueError('attribute field names cannot be empty')
        return v


class AttributeAppendResponse(BaseModel):
    snapshot_id: int
    user_id: int
    status: SnapshotStatus


class SnapshotResponse(BaseModel):
    snapshot_id: int
    fields: Dict[str, Any]
    created_at: datetime
    approved_at: Optional[datetime] = None
    status: SnapshotStatus


class SnapshotHistoryResponse(BaseModel):
    user_id: int
    approved_snapshot_id: Optional[int] = None
    snapshots: List[SnapshotResponse]


class PendingSnapshot(BaseModel):
    snapshot_id: int
    fields: Dict[str, Any]
    created_at: datetime


class PendingListResponse(BaseModel):
    user_id: int
    pending: List[PendingSnapshot]
    count: int


class ApprovalResponse(BaseModel):
    user_id: int
    snapshot_id: int
    approved_at: datetime
    previous_snapshot_id: Optional[int] = None
    reapproval: bool


class TariffCreateRequest(BaseModel):
    name: str
    max_orders_per_month: int
    price_in_cents: Optional[int] = None
    billing_period_in_months: Optional[int] = 1

    @field_validator('max_orders_per_month')
    @classmethod
    def limit_not_negative(cls, v):
        if v < 0:
            raise ValueError('max_orders_per_month must be >= 0')
        return v

    @field_validator('billing_period_in_months')
    @classmethod
    def period_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('billing_period_in_months must be >= 1')
        return v


class TariffResponse(BaseModel):
    tariff_id: int
    name: str
    max_orders_per_month: int
    price_in_cents: Optional[int] = None
    billing_period_in_months: Optional[int] = None


class SubscriptionRequest(BaseModel):
    tariff_id: int
    billing_anchor: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    entry_id: int
    buyer_id: int
    tariff_id: int
    billing_anchor: datetime
    active: bool


class QuotaResponse(BaseModel):
    buyer_id: int
    tariff_id: int
    period_start: datetime
    period_end: datetime
    used: int
    limit: int
    remaining: int


class OrderItemModel(BaseModel):
    product_id: int
    quantity: int

    @field_validator('quantity')
    @classmethod
    def quantity_positive(cls, v):
        if v <= 0:
            raise ValueError('quantity must be positive')
        return v


class OrderCreateRequest(BaseModel):
    buyer_id: int
    port_ids: List[int] = []
    items: List[OrderItemModel] = []


class OrderResponseModel(BaseModel):
    order_id: int
    buyer_id: int
    status: OrderStatus
    created_at: datetime
    port_ids: List[int]
    items: List[OrderItemModel]


class ResponseItemModel(BaseModel):
    product_id: int
    suggested_quantity: int

    @field_validator('suggested_quantity')
    @classmethod
    def quantity_not_negative(cls, v):
        if v < 0:
            raise ValueError('suggested_quantity must be >= 0')
        return v


class OrderReplyRequest(BaseModel):
    seller_id: int
    items: List[ResponseItemModel] = []


class OrderReplyResponse(BaseModel):
    response_id: int
    order_id: int
    seller_id: int
    buyer_id: int
    created_at: datetime
    items: List[ResponseItemModel]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    config_issues: List[str] = []


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
