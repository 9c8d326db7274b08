"""Role capability matrix.

All role checks go through :func:`is_allowed` so the admin/staff/rentor rules
live in one table instead of being repeated in every route.
"""
from enum import Enum
from typing import Dict, FrozenSet

from .errors import AuthorizationError
from .models import RoleEnum


class Operation(str, Enum):
    BOOKING_CREATE = "booking:create"
    BOOKING_LIST = "booking:list"
    BOOKING_READ_ANY = "booking:read-any"
    BOOKING_UPDATE_ANY = "booking:update-any"
    BOOKING_DELETE = "booking:delete"
    BOOKING_STATS = "booking:stats"
    LEDGER_CREATE = "ledger:create"
    LEDGER_LIST = "ledger:list"
    LEDGER_READ_ANY = "ledger:read-any"
    LEDGER_STATS = "ledger:stats"
    REVENUE_READ = "revenue:read"
    PROPERTY_CREATE = "property:create"
    PROPERTY_MANAGE_ANY = "property:manage-any"
    PROPERTY_VIEW_DISABLED = "property:view-disabled"
    PROPERTY_STATS = "property:stats"
    USER_ADMIN = "user:admin"


ALL_ROLES = frozenset(RoleEnum)
PRIVILEGED = frozenset({RoleEnum.ADMIN, RoleEnum.STAFF})
ADMIN_ONLY = frozenset({RoleEnum.ADMIN})

CAPABILITIES: Dict[Operation, FrozenSet[RoleEnum]] = {
    Operation.BOOKING_CREATE: ALL_ROLES,
    Operation.BOOKING_LIST: ADMIN_ONLY,
    Operation.BOOKING_READ_ANY: PRIVILEGED,
    Operation.BOOKING_UPDATE_ANY: PRIVILEGED,
    Operation.BOOKING_DELETE: ADMIN_ONLY,
    Operation.BOOKING_STATS: ADMIN_ONLY,
    Operation.LEDGER_CREATE: ADMIN_ONLY,
    Operation.LEDGER_LIST: ADMIN_ONLY,
    Operation.LEDGER_READ_ANY: PRIVILEGED,
    Operation.LEDGER_STATS: ADMIN_ONLY,
    Operation.REVENUE_READ: ADMIN_ONLY,
    Operation.PROPERTY_CREATE: ALL_ROLES,
    Operation.PROPERTY_MANAGE_ANY: ADMIN_ONLY,
    Operation.PROPERTY_VIEW_DISABLED: ADMIN_ONLY,
    Operation.PROPERTY_STATS: ADMIN_ONLY,
    Operation.USER_ADMIN: ADMIN_ONLY,
}


def is_allowed(role: RoleEnum, operation: Operation) -> bool:
    return role in CAPABILITIES.get(operation, frozenset())


def ensure_allowed(role: RoleEnum, operation: Operation) -> None:
    if not is_allowed(role, operation):
        allowed = " or ".join(sorted(r.value for r in CAPABILITIES.get(operation, frozenset())))
        raise AuthorizationError(f"Access denied. This feature requires {allowed or 'elevated'} privileges.")
