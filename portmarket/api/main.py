"""
HTTP surface for the marketplace core.
Handlers are thin: they validate input with pydantic, call the core and map
core errors onto HTTP statuses with a stable error_type.
"""

from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Header
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    UserCreateRequest,
    UserResponse,
    AttributeAppendRequest,
    AttributeAppendResponse,
    SnapshotResponse,
    SnapshotHistoryResponse,
    PendingSnapshot,
    PendingListResponse,
    ApprovalResponse,
    TariffCreateRequest,
    TariffResponse,
    SubscriptionRequest,
    SubscriptionResponse,
    QuotaResponse,
    OrderItemModel,
    OrderCreateRequest,
    OrderResponseModel,
    OrderReplyRequest,
    OrderReplyResponse,
    ResponseItemModel,
    HealthResponse,
    ErrorResponse
)
from ..core import attributes, subjects, tariffs, orders, quota
from ..core.approval import ApprovalService
from ..core.config import VERSION, debug_enabled, validate_config
from ..core.db import init_db, health_check
from ..core.errors import (
    MarketplaceError,
    ValidationError,
    RoleMismatchError,
    NotFoundError,
    NoActiveTariffError,
    QuotaExceededError,
    ConflictError,
    TransientError
)
from ..core.schema import SnapshotStatus
from util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    issues = validate_config()
    for issue in issues:
        logger.warning(f"Configuration issue: {issue}")
    yield


app = FastAPI(
    title="Port Marketplace API",
    version=VERSION,
    description="Maritime procurement marketplace: attribute approval and tariff quotas",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Most specific class first
_STATUS_BY_ERROR = [
    (RoleMismatchError, 403),
    (ValidationError, 400),
    (NotFoundError, 404),
    (NoActiveTariffError, 402),
    (QuotaExceededError, 429),
    (ConflictError, 409),
    (TransientError, 503),
]


def status_for(error: MarketplaceError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 500


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request, exc: MarketplaceError):
    status_code = status_for(exc)
    body = ErrorResponse(error_type=exc.code, message=str(exc), details=exc.context or None)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        config_issues=validate_config()
    )


@app.post("/users", response_model=UserResponse, status_code=201)
def create_user_endpoint(req: UserCreateRequest):
    user_id = subjects.create_user(req.email, req.name, req.role, phone=req.phone, status=req.status)
    return get_user_endpoint(user_id)


@app.get("/users/{user_id}", response_model=UserResponse)
def get_user_endpoint(user_id: int):
    subject = subjects.get_user(user_id)
    if subject is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)
    return UserResponse(
        user_id=subject.user_id,
        email=subject.email,
        name=subject.name,
        role=subject.role,
        phone=subject.phone,
        status=subject.status,
        approved_snapshot_id=subject.approved_snapshot_id,
        approved_fields=attributes.get_approved_fields(user_id)
    )


@app.post("/users/{user_id}/attributes", response_model=AttributeAppendResponse, status_code=201)
def append_attributes_endpoint(user_id: int, req: AttributeAppendRequest):
    """Submit a new attribute set; it stays pending until an admin approves it."""
    snapshot_id = attributes.append_snapshot(user_id, req.fields)
    return AttributeAppendResponse(
        snapshot_id=snapshot_id,
        user_id=user_id,
        status=attributes.get_snapshot_status(user_id, snapshot_id)
    )


@app.get("/users/{user_id}/attributes", response_model=SnapshotHistoryResponse)
def attribute_history_endpoint(user_id: int):
    history = attributes.snapshot_history(user_id)
    current = next((h.snapshot.snapshot_id for h in history if h.status == SnapshotStatus.CURRENT), None)
    return SnapshotHistoryResponse(
        user_id=user_id,
        approved_snapshot_id=current,
        snapshots=[SnapshotResponse(**h.to_dict()) for h in history]
    )


@app.get("/admin/users/{user_id}/attributes/pending", response_model=PendingListResponse)
def list_pending_endpoint(user_id: int, x_actor_id: int = Header(...)):
    pending = ApprovalService(actor_id=x_actor_id).list_pending(user_id)
    return PendingListResponse(
        user_id=user_id,
        pending=[PendingSnapshot(**p) for p in pending],
        count=len(pending)
    )


@app.post("/admin/users/{user_id}/attributes/{snapshot_id}/approve", response_model=ApprovalResponse)
def approve_endpoint(user_id: int, snapshot_id: int, x_actor_id: int = Header(...)):
    result = ApprovalService(actor_id=x_actor_id).approve(user_id, snapshot_id)
    return ApprovalResponse(**result.to_dict())


@app.post("/tariffs", response_model=TariffResponse, status_code=201)
def create_tariff_endpoint(req: TariffCreateRequest):
    tariff_id = tariffs.create_tariff(
        req.name, req.max_orders_per_month,
        price_in_cents=req.price_in_cents,
        billing_period_in_months=req.billing_period_in_months
    )
    return TariffResponse(**vars(tariffs.get_tariff(tariff_id)))


@app.get("/tariffs", response_model=List[TariffResponse])
def list_tariffs_endpoint():
    return [TariffResponse(**vars(t)) for t in tariffs.list_tariffs()]


@app.post("/buyers/{buyer_id}/subscription", response_model=SubscriptionResponse, status_code=201)
def subscribe_endpoint(buyer_id: int, req: SubscriptionRequest):
    entry = tariffs.subscribe(buyer_id, req.tariff_id, anchor=req.billing_anchor)
    return SubscriptionResponse(**vars(entry))


@app.get("/buyers/{buyer_id}/quota", response_model=QuotaResponse)
def quota_endpoint(buyer_id: int):
    return QuotaResponse(**quota.quota_usage(buyer_id).to_dict())


def _order_model(order) -> OrderResponseModel:
    return OrderResponseModel(
        order_id=order.order_id,
        buyer_id=order.buyer_id,
        status=order.status,
        created_at=order.created_at,
        port_ids=order.port_ids,
        items=[OrderItemModel(product_id=i.product_id, quantity=i.quantity) for i in order.items]
    )


@app.post("/orders", response_model=OrderResponseModel, status_code=201)
def create_order_endpoint(req: OrderCreateRequest):
    """Place an order; rejected with 429 once the tariff's period limit is used up."""
    order_id = quota.place_order(
        req.buyer_id,
        port_ids=req.port_ids,
        items=[item.model_dump() for item in req.items]
    )
    return _order_model(orders.get_order(order_id))


@app.get("/orders/{order_id}", response_model=OrderResponseModel)
def get_order_endpoint(order_id: int):
    return _order_model(orders.get_order(order_id))


@app.post("/orders/{order_id}/responses", response_model=OrderReplyResponse, status_code=201)
def create_order_reply_endpoint(order_id: int, req: OrderReplyRequest):
    response = orders.create_order_response(
        order_id, req.seller_id, items=[item.model_dump() for item in req.items]
    )
    return OrderReplyResponse(
        response_id=response.response_id,
        order_id=response.order_id,
        seller_id=response.seller_id,
        buyer_id=response.buyer_id,
        created_at=response.created_at,
        items=[ResponseItemModel(**i) for i in response.items]
    )
