"""Role -> capability mapping.

Grant sets are flat and explicit per role; there is no inheritance between
roles. An actor's grants are copied from its role's defaults when the actor
is created and are checked as stored afterwards.
"""
from typing import Dict, List

from .models import RoleEnum

CRUD = ["create", "read", "update", "delete"]

DEFAULT_PERMISSIONS: Dict[RoleEnum, List[dict]] = {
    RoleEnum.ADMIN: [
        {"resource": "applications", "actions": CRUD + ["approve"]},
        {"resource": "users", "actions": list(CRUD)},
        {"resource": "reports", "actions": list(CRUD)},
        {"resource": "settings", "actions": ["read", "update"]},
    ],
    RoleEnum.UNDERWRITER: [
        {"resource": "applications", "actions": ["read", "update", "approve"]},
        {"resource": "reports", "actions": ["read"]},
    ],
    RoleEnum.ANALYST: [
        {"resource": "applications", "actions": ["create", "read", "update"]},
        {"resource": "reports", "actions": ["read"]},
    ],
    RoleEnum.VIEWER: [
        {"resource": "applications", "actions": ["read"]},
        {"resource": "reports", "actions": ["read"]},
    ],
}


def coerce_role(role) -> RoleEnum:
    """Unknown roles fall back to viewer."""
    if isinstance(role, RoleEnum):
        return role
    try:
        return RoleEnum(str(role).lower())
    except ValueError:
        return RoleEnum.VIEWER


def default_permissions(role) -> List[dict]:
    # Fresh copies so callers can't mutate the table
    return [
        {"resource": g["resource"], "actions": list(g["actions"])}
        for g in DEFAULT_PERMISSIONS[coerce_role(role)]
    ]


def has_permission(actor, resource: str, action: str) -> bool:
    if actor is None:
        return False
    for grant in actor.permissions:
        if grant.get("resource") == resource and action in grant.get("actions", []):
            return True
    return False


def has_role(actor, *roles) -> bool:
    if actor is None:
        return False
    allowed = {r if isinstance(r, RoleEnum) else RoleEnum(r) for r in roles}
    return coerce_role(actor.role) in allowed
