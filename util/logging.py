"""
Structured logging for marketplace operations.
Attribute approval, quota enforcement and role checks all log through here.
"""

import logging
from typing import Any, Dict, List

# Attribute values (ssn, avatar urls, ...) never reach the log unless revealed explicitly
DEFAULT_SENSITIVE_FIELDS = ['fields', 'value', 'payload', 'ssn', 'password', 'password_hash', 'secret']


class StructuredLogger:
    """Structured logger for attribute approval and quota operations."""

    def __init__(self, name: str = "portmarket"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_snapshot_appended(self, user_id: int, snapshot_id: int, field_names: List[str]):
        """Log a new attribute snapshot. Only field names are recorded."""
        self.log_operation("attributes.append", "pending", {
            "user_id": user_id,
            "snapshot_id": snapshot_id,
            "field_names": sorted(field_names)
        })

    def log_approval_decision(self, user_id: int, snapshot_id: int, previous_snapshot_id: int = None,
                              actor_id: int = None, reapproval: bool = False):
        """Log an approval pointer move."""
        details = {
            "user_id": user_id,
            "snapshot_id": snapshot_id,
            "previous_snapshot_id": previous_snapshot_id,
            "reapproval": reapproval
        }
        if actor_id is not None:
            details["actor_id"] = actor_id

        self.log_operation("approval.decision", "approved", details)

    def log_quota_decision(self, buyer_id: int, decision: str, used: int, limit: int,
                           period_start: str, period_end: str, tariff_id: int = None):
        """Log a quota guard decision (accepted or rejected)."""
        self.log_operation("quota.authorize", decision, {
            "buyer_id": buyer_id,
            "tariff_id": tariff_id,
            "used": used,
            "limit": limit,
            "period_start": period_start,
            "period_end": period_end
        })

    def log_role_rejection(self, user_id: int, required_role: str, actual_role: str, code: str):
        """Log a role guard rejection."""
        self.log_operation("roles.check", "rejected", {
            "user_id": user_id,
            "required_role": required_role,
            "actual_role": actual_role,
            "code": code
        })

    def log_store_failure(self, operation: str, error_code: str, details: Dict[str, Any] = None):
        """Log a storage failure surfaced as a conflict or transient error."""
        log_details = {"error_code": error_code}
        if details:
            log_details.update(details)

        self.log_operation(f"store.{operation}", "failed", log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    # Determine operation type from event_type
    if event_type.startswith("approval"):
        operation = "approval"
    elif event_type.startswith("quota"):
        operation = "quota"
    elif event_type.startswith("subscription"):
        operation = "subscription"
    else:
        operation = event_type.replace(".", "_")

    logger.log_operation(operation, "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


def redact_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Replace every attribute value with a marker, keeping the keys."""
    return {k: "[REDACTED]" for k in fields}
