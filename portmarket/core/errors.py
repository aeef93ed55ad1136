"""
Error taxonomy for the marketplace core.
Every error carries a stable string code plus the ids a caller needs to act on it.
"""

from typing import Any, Dict, Optional

ERR_NO_ACTIVE_TARIFF = "ERR_NO_ACTIVE_TARIFF"
ERR_ORDER_PER_MONTH_LIMIT_REACHED = "ERR_ORDER_PER_MONTH_LIMIT_REACHED"
ERR_USER_NOT_BUYER = "ERR_USER_NOT_BUYER"
ERR_USER_NOT_SELLER = "ERR_USER_NOT_SELLER"
ERR_USER_NOT_ADMIN = "ERR_USER_NOT_ADMIN"
ERR_INVALID_ATTRIBUTE_FIELDS = "ERR_INVALID_ATTRIBUTE_FIELDS"
ERR_VALIDATION = "ERR_VALIDATION"
ERR_NOT_FOUND = "ERR_NOT_FOUND"
ERR_CONFLICT = "ERR_CONFLICT"
ERR_STORE_UNAVAILABLE = "ERR_STORE_UNAVAILABLE"


class MarketplaceError(Exception):
    """Base class for all core failures."""

    code = "ERR_MARKETPLACE"
    retryable = False

    def __init__(self, message: str = "", code: Optional[str] = None, **context: Any):
        self.code = code or self.code
        self.context: Dict[str, Any] = context
        super().__init__(message or self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self), "context": dict(self.context)}


class ValidationError(MarketplaceError):
    """Caller supplied something malformed. Not retried."""
    code = ERR_VALIDATION


class RoleMismatchError(ValidationError):
    """Actor's role does not match the role the entity requires."""

    def __init__(self, user_id: int, required_role: str, actual_role: Optional[str], code: str):
        super().__init__(
            f"User {user_id} has role {actual_role!r}, {required_role!r} required",
            code=code,
            user_id=user_id,
            required_role=required_role,
            actual_role=actual_role,
        )


class NotFoundError(MarketplaceError):
    """Subject, snapshot, tariff or order does not exist."""
    code = ERR_NOT_FOUND


class PolicyError(MarketplaceError):
    """Expected, user-actionable business rejection. Never retried automatically."""


class NoActiveTariffError(PolicyError):
    code = ERR_NO_ACTIVE_TARIFF


class QuotaExceededError(PolicyError):
    code = ERR_ORDER_PER_MONTH_LIMIT_REACHED


class ConflictError(MarketplaceError):
    """Concurrent writers collided; safe to retry once."""
    code = ERR_CONFLICT
    retryable = True


class TransientError(MarketplaceError):
    """Lock timeout or connection failure; retry with backoff."""
    code = ERR_STORE_UNAVAILABLE
    retryable = True
