"""
Approval service - moves a user's approval pointer to one of their attribute snapshots.

Pointer update and approved_at stamp commit together under the write lock, so two
admins approving for the same user never interleave.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .attributes import fetch_snapshot, list_pending
from .db import get_db, transaction
from .errors import NotFoundError
from .roles import require_admin
from .schema import format_ts, utcnow
from .subjects import require_subject, set_approved_snapshot_id
from util.logging import logger, audit_event


@dataclass
class ApprovalResult:
    user_id: int
    snapshot_id: int
    approved_at: datetime
    previous_snapshot_id: Optional[int] = None

    @property
    def reapproval(self) -> bool:
        return self.previous_snapshot_id == self.snapshot_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "snapshot_id": self.snapshot_id,
            "approved_at": self.approved_at,
            "previous_snapshot_id": self.previous_snapshot_id,
            "reapproval": self.reapproval,
        }


def approve(user_id: int, snapshot_id: int, now: Optional[datetime] = None,
            actor_id: Optional[int] = None) -> ApprovalResult:
    """Make ``snapshot_id`` the approved attribute set of ``user_id``.

    Re-approving the current snapshot is allowed and refreshes approved_at.
    Raises NotFoundError if the snapshot does not belong to the user, and
    RoleMismatchError if ``actor_id`` is given and is not an admin.
    """
    with transaction("approval.approve") as conn:
        # stamped under the write lock so the last committed approval carries the latest time
        approved_at = now or utcnow()
        if actor_id is not None:
            require_admin(conn, actor_id)
        subject = require_subject(conn, user_id)

        snapshot = fetch_snapshot(conn, snapshot_id)
        if snapshot is None or snapshot.user_id != user_id:
            raise NotFoundError(
                f"Snapshot {snapshot_id} does not belong to user {user_id}",
                user_id=user_id, snapshot_id=snapshot_id
            )

        set_approved_snapshot_id(conn, user_id, snapshot_id)
        conn.execute(
            "UPDATE user_attribute_snapshots SET approved_at = ? WHERE snapshot_id = ?",
            (format_ts(approved_at), snapshot_id)
        )

    result = ApprovalResult(
        user_id=user_id,
        snapshot_id=snapshot_id,
        approved_at=approved_at,
        previous_snapshot_id=subject.approved_snapshot_id
    )
    logger.log_approval_decision(
        user_id, snapshot_id,
        previous_snapshot_id=result.previous_snapshot_id,
        actor_id=actor_id,
        reapproval=result.reapproval
    )
    audit_event("approval.granted", {"user_id": user_id, "snapshot_id": snapshot_id, "actor_id": actor_id})
    return result


class ApprovalService:
    """Admin-facing surface bound to the acting administrator."""

    def __init__(self, actor_id: Optional[int] = None):
        self.actor_id = actor_id

    def list_pending(self, user_id: int) -> List[Dict[str, Any]]:
        if self.actor_id is not None:
            with get_db() as conn:
                require_admin(conn, self.actor_id)
        return list_pending(user_id)

    def approve(self, user_id: int, snapshot_id: int, now: Optional[datetime] = None) -> ApprovalResult:
        return approve(user_id, snapshot_id, now=now, actor_id=self.actor_id)
