"""
Subject store - users, their role and the single approval pointer into the attribute log.
Functions taking a ``conn`` run inside the caller's transaction.
"""

import sqlite3
from typing import Optional, List

from .db import get_db, transaction
from .errors import NotFoundError, ValidationError
from .schema import Subject, Role, UserStatus

_SUBJECT_COLUMNS = "user_id, email, name, role, phone, status, approved_snapshot_id"


def _row_to_subject(row) -> Subject:
    user_id, email, name, role, phone, status, approved_snapshot_id = row
    return Subject(
        user_id=user_id,
        email=email,
        name=name,
        role=Role(role),
        phone=phone,
        status=UserStatus(status) if status else None,
        approved_snapshot_id=approved_snapshot_id
    )


def create_user(email: str, name: str, role, phone: Optional[str] = None, status=UserStatus.VERIFIED) -> int:
    """Create a user and return its id."""
    if not email or not email.strip() or "@" not in email:
        raise ValidationError(f"Invalid email: {email!r}", email=email)
    if not name or not name.strip():
        raise ValidationError("name cannot be empty")
    try:
        role = Role(role)
        status = UserStatus(status) if status is not None else None
    except ValueError as e:
        raise ValidationError(str(e)) from e

    with transaction("users.create") as conn:
        cursor = conn.execute(
            "INSERT INTO users (email, name, phone, status, role) VALUES (?, ?, ?, ?, ?)",
            (email.strip(), name.strip(), phone, status.value if status else None, role.value)
        )
        return cursor.lastrowid


def fetch_subject(conn: sqlite3.Connection, user_id: int) -> Optional[Subject]:
    row = conn.execute(
        f"SELECT {_SUBJECT_COLUMNS} FROM users WHERE user_id = ?", (user_id,)
    ).fetchone()
    return _row_to_subject(row) if row else None


def require_subject(conn: sqlite3.Connection, user_id: int) -> Subject:
    subject = fetch_subject(conn, user_id)
    if subject is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)
    return subject


def get_user(user_id: int) -> Optional[Subject]:
    """Get a user by id, or None."""
    with get_db() as conn:
        return fetch_subject(conn, user_id)


def list_users(role=None) -> List[Subject]:
    with get_db() as conn:
        if role is None:
            rows = conn.execute(f"SELECT {_SUBJECT_COLUMNS} FROM users ORDER BY user_id").fetchall()
        else:
            rows = conn.execute(
                f"SELECT {_SUBJECT_COLUMNS} FROM users WHERE role = ? ORDER BY user_id",
                (Role(role).value,)
            ).fetchall()
    return [_row_to_subject(row) for row in rows]


def subject_exists(user_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
    if conn is not None:
        return fetch_subject(conn, user_id) is not None
    with get_db() as conn:
        return fetch_subject(conn, user_id) is not None


def get_role(user_id: int, conn: Optional[sqlite3.Connection] = None) -> Role:
    """Role of a user; NotFoundError if the user does not exist."""
    if conn is not None:
        return require_subject(conn, user_id).role
    with get_db() as conn:
        return require_subject(conn, user_id).role


def get_approved_snapshot_id(user_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[int]:
    if conn is not None:
        return require_subject(conn, user_id).approved_snapshot_id
    with get_db() as conn:
        return require_subject(conn, user_id).approved_snapshot_id


def set_approved_snapshot_id(conn: sqlite3.Connection, user_id: int, snapshot_id: int) -> None:
    """Move the approval pointer. Only the approval service calls this, inside its transaction."""
    cursor = conn.execute(
        "UPDATE users SET approved_snapshot_id = ? WHERE user_id = ?",
        (snapshot_id, user_id)
    )
    if cursor.rowcount == 0:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)
