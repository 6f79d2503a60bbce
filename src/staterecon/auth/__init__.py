"""Principals, roles and the permission gate."""

from .gate import PermissionGate, RoleDirectory
from .models import ADMIN, MANAGER, ROLE_RANK, SUPER_ADMIN, USER, Principal, role_satisfies

__all__ = [
    "PermissionGate",
    "RoleDirectory",
    "Principal",
    "role_satisfies",
    "ROLE_RANK",
    "SUPER_ADMIN",
    "ADMIN",
    "MANAGER",
    "USER",
]
