"""
Role guard shared by buyer-scoped and seller-scoped writes.
"""

import sqlite3

from .errors import RoleMismatchError, ERR_USER_NOT_BUYER, ERR_USER_NOT_SELLER, ERR_USER_NOT_ADMIN
from .schema import Role, Subject
from .subjects import require_subject
from util.logging import logger

ROLE_ERROR_CODES = {
    Role.BUYER: ERR_USER_NOT_BUYER,
    Role.SELLER: ERR_USER_NOT_SELLER,
    Role.ADMIN: ERR_USER_NOT_ADMIN,
}


def require_role(conn: sqlite3.Connection, user_id: int, role) -> Subject:
    """Return the subject if it has ``role``; raise RoleMismatchError otherwise."""
    required = Role(role)
    subject = require_subject(conn, user_id)
    if subject.role != required:
        code = ROLE_ERROR_CODES[required]
        logger.log_role_rejection(user_id, required.value, subject.role.value, code)
        raise RoleMismatchError(user_id, required.value, subject.role.value, code)
    return subject


def require_buyer(conn: sqlite3.Connection, user_id: int) -> Subject:
    return require_role(conn, user_id, Role.BUYER)


def require_seller(conn: sqlite3.Connection, user_id: int) -> Subject:
    return require_role(conn, user_id, Role.SELLER)


def require_admin(conn: sqlite3.Connection, user_id: int) -> Subject:
    return require_role(conn, user_id, Role.ADMIN)
