"""
Attribute snapshot log and version classifier.

Each change to a user's dynamic attributes (ssn, avatar_url, ...) is appended as a new
immutable snapshot. Which snapshot is in effect is decided by the approval pointer on
the user row; the status of every other snapshot is derived on read by classify()
and never stored.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import attribute_audit_reveal
from .db import get_db, transaction
from .errors import NotFoundError, ValidationError, ERR_INVALID_ATTRIBUTE_FIELDS
from .schema import (
    AttributeSnapshot, ClassifiedSnapshot, SnapshotStatus,
    format_ts, parse_ts, utcnow
)
from .subjects import require_subject
from util.logging import logger, audit_event, redact_fields

_SNAPSHOT_COLUMNS = "snapshot_id, user_id, fields, created_at, approved_at"


def _row_to_snapshot(row) -> AttributeSnapshot:
    snapshot_id, user_id, fields, created_at, approved_at = row
    return AttributeSnapshot(
        snapshot_id=snapshot_id,
        user_id=user_id,
        fields=json.loads(fields),
        created_at=parse_ts(created_at),
        approved_at=parse_ts(approved_at)
    )


def validate_fields(fields: Any) -> str:
    """Check that ``fields`` is a JSON object with non-empty string keys; return it encoded."""
    if not isinstance(fields, dict):
        raise ValidationError(
            f"Attribute fields must be an object, got {type(fields).__name__}",
            code=ERR_INVALID_ATTRIBUTE_FIELDS
        )
    for key in fields:
        if not isinstance(key, str) or not key.strip():
            raise ValidationError(
                f"Invalid attribute field name: {key!r}",
                code=ERR_INVALID_ATTRIBUTE_FIELDS,
                field=repr(key)
            )
    try:
        return json.dumps(fields, sort_keys=True, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Attribute fields are not JSON serializable: {e}",
            code=ERR_INVALID_ATTRIBUTE_FIELDS
        ) from e


def append_snapshot(user_id: int, fields: Dict[str, Any], now: Optional[datetime] = None) -> int:
    """Append a new pending snapshot of ``fields`` for ``user_id`` and return its id.

    Earlier snapshots are never touched; approved_at starts out NULL.
    """
    encoded = validate_fields(fields)
    created_at = format_ts(now or utcnow())

    with transaction("attributes.append") as conn:
        require_subject(conn, user_id)
        cursor = conn.execute(
            "INSERT INTO user_attribute_snapshots (user_id, fields, created_at, approved_at) "
            "VALUES (?, ?, ?, NULL)",
            (user_id, encoded, created_at)
        )
        snapshot_id = cursor.lastrowid

    logger.log_snapshot_appended(user_id, snapshot_id, list(fields.keys()))
    # keys stay visible in the audit trail, values only when explicitly revealed
    audit_event(
        "attributes.append",
        {"user_id": user_id, "snapshot_id": snapshot_id},
        {"fields": fields if attribute_audit_reveal() else redact_fields(fields)},
        sensitive_fields=[]
    )
    return snapshot_id


def fetch_snapshot(conn: sqlite3.Connection, snapshot_id: int) -> Optional[AttributeSnapshot]:
    row = conn.execute(
        f"SELECT {_SNAPSHOT_COLUMNS} FROM user_attribute_snapshots WHERE snapshot_id = ?",
        (snapshot_id,)
    ).fetchone()
    return _row_to_snapshot(row) if row else None


def fetch_snapshots(conn: sqlite3.Connection, user_id: int) -> List[AttributeSnapshot]:
    rows = conn.execute(
        f"SELECT {_SNAPSHOT_COLUMNS} FROM user_attribute_snapshots "
        "WHERE user_id = ? ORDER BY created_at, snapshot_id",
        (user_id,)
    ).fetchall()
    return [_row_to_snapshot(row) for row in rows]


def get_snapshot(snapshot_id: int) -> Optional[AttributeSnapshot]:
    with get_db() as conn:
        return fetch_snapshot(conn, snapshot_id)


def list_snapshots(user_id: int) -> List[AttributeSnapshot]:
    """Full history for a user, oldest first."""
    with get_db() as conn:
        require_subject(conn, user_id)
        return fetch_snapshots(conn, user_id)


def classify(snapshot: AttributeSnapshot, approved_snapshot_id: Optional[int],
             pointer_snapshot: Optional[AttributeSnapshot]) -> SnapshotStatus:
    """Derive a snapshot's status relative to its subject's approval pointer.

    Pure function: the only inputs are the two snapshots' positions in the log,
    the pointer id and whether the snapshot was ever stamped as approved.
    """
    if approved_snapshot_id is None:
        return SnapshotStatus.PENDING

    if snapshot.snapshot_id == approved_snapshot_id:
        return SnapshotStatus.CURRENT

    if pointer_snapshot is None:
        raise ValueError(f"Pointer snapshot {approved_snapshot_id} required to classify {snapshot.snapshot_id}")

    if snapshot.sort_key() > pointer_snapshot.sort_key():
        return SnapshotStatus.PENDING

    if snapshot.approved_at is None:
        return SnapshotStatus.OUTDATED

    return SnapshotStatus.PREVIOUSLY_APPROVED


def classify_history(snapshots: List[AttributeSnapshot], approved_snapshot_id: Optional[int]) -> List[ClassifiedSnapshot]:
    pointer = None
    if approved_snapshot_id is not None:
        pointer = next((s for s in snapshots if s.snapshot_id == approved_snapshot_id), None)
    return [ClassifiedSnapshot(s, classify(s, approved_snapshot_id, pointer)) for s in snapshots]


def snapshot_history(user_id: int) -> List[ClassifiedSnapshot]:
    """Every snapshot of a user with its derived status, oldest first."""
    with get_db() as conn:
        subject = require_subject(conn, user_id)
        snapshots = fetch_snapshots(conn, user_id)
    return classify_history(snapshots, subject.approved_snapshot_id)


def get_snapshot_status(user_id: int, snapshot_id: int) -> SnapshotStatus:
    for item in snapshot_history(user_id):
        if item.snapshot.snapshot_id == snapshot_id:
            return item.status
    raise NotFoundError(
        f"Snapshot {snapshot_id} does not belong to user {user_id}",
        user_id=user_id, snapshot_id=snapshot_id
    )


def list_pending(user_id: int) -> List[Dict[str, Any]]:
    """Snapshots awaiting review, for the admin surface."""
    return [
        {
            "snapshot_id": item.snapshot.snapshot_id,
            "fields": item.snapshot.fields,
            "created_at": item.snapshot.created_at,
        }
        for item in snapshot_history(user_id)
        if item.status == SnapshotStatus.PENDING
    ]


def get_approved_fields(user_id: int) -> Optional[Dict[str, Any]]:
    """Fields currently in effect for a user, or None if nothing was ever approved."""
    with get_db() as conn:
        subject = require_subject(conn, user_id)
        if subject.approved_snapshot_id is None:
            return None
        snapshot = fetch_snapshot(conn, subject.approved_snapshot_id)
    return snapshot.fields if snapshot else None
