"""
Marketplace core: versioned attribute approval and rolling-window order quotas.
"""

from .approval import approve, ApprovalService, ApprovalResult
from .attributes import append_snapshot, classify, snapshot_history, list_pending, get_approved_fields
from .billing import period_length, resolve_period
from .quota import authorize, place_order, quota_usage
from .schema import Role, UserStatus, OrderStatus, SnapshotStatus, BillingWindow, QuotaDecision

__all__ = [
    'approve',
    'ApprovalService',
    'ApprovalResult',
    'append_snapshot',
    'classify',
    'snapshot_history',
    'list_pending',
    'get_approved_fields',
    'period_length',
    'resolve_period',
    'authorize',
    'place_order',
    'quota_usage',
    'Role',
    'UserStatus',
    'OrderStatus',
    'SnapshotStatus',
    'BillingWindow',
    'QuotaDecision'
]
