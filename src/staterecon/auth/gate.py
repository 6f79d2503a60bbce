"""Role checks in front of destructive operations."""

import logging
import uuid
from typing import Optional

from ..audit import PERMISSIONS_CHECK_FAILED, AuditLogEntry, AuditMetadata, AuditStore
from ..db import Database
from ..errors import AuditWriteFailed, PermissionDenied
from .models import Principal, role_satisfies

logger = logging.getLogger(__name__)


class RoleDirectory:
    """The ``user_roles`` table: principal id to role name."""

    def __init__(self, db: Database):
        self.db = db

    async def role_for(self, principal_id: str) -> Optional[str]:
        async with self.db.snapshot():
            row = await self.db.fetchone(
                "SELECT role_name FROM user_roles WHERE principal_id = ?", (principal_id,)
            )
        return row["role_name"] if row else None

    async def assign(self, principal_id: str, role_name: str):
        async with self.db.transaction():
            await self.db.execute(
                "INSERT OR REPLACE INTO user_roles (principal_id, role_name) VALUES (?, ?)",
                (principal_id, role_name),
            )
        logger.info(f"Assigned role {role_name!r} to {principal_id}")


class PermissionGate:
    """
    Answers ``require(role)`` for one principal and session.

    The role comes from the principal's own claim when present, otherwise from
    the role directory; with neither, the check is denied. Grants are cached
    for the life of the gate, denials are not, and every denial is audited.
    """

    def __init__(self, principal: Principal, directory: RoleDirectory, audit: AuditStore):
        self.principal = principal
        self.directory = directory
        self.audit = audit
        self._granted: dict[str, str] = {}

    async def resolve_role(self) -> Optional[str]:
        if self.principal.role:
            return self.principal.role
        return await self.directory.role_for(self.principal.id)

    async def require(self, role: str) -> str:
        """Return the resolved role, or raise PermissionDenied."""
        if role in self._granted:
            return self._granted[role]

        actual = await self.resolve_role()
        if role_satisfies(actual, role):
            self._granted[role] = actual
            logger.debug(f"Granted {role!r} to {self.principal.id} (role={actual})")
            return actual

        logger.warning(
            f"Permission denied: {self.principal.id} has role {actual or 'none'}, needs {role}"
        )
        await self._audit_denial(role, actual)
        raise PermissionDenied(self.principal.id, role, actual)

    async def _audit_denial(self, required: str, actual: Optional[str]):
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            action_type=PERMISSIONS_CHECK_FAILED,
            principal_id=self.principal.id,
            principal_email=self.principal.email,
            principal_role=actual,
            ip=self.principal.ip,
            metadata=AuditMetadata(
                session_id=self.principal.session_id,
                user_agent=self.principal.user_agent,
                required_role=required,
            ),
        )
        try:
            await self.audit.append(entry)
        except AuditWriteFailed:
            logger.exception(f"Could not record permission denial for {self.principal.id}")
