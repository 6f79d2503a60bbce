"""The objects one running core shares, passed explicitly instead of globals."""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Optional

from .audit import AuditStore
from .auth import PermissionGate, Principal, RoleDirectory
from .config import Settings, settings as default_settings
from .db import Database
from .engine import CommitEngine, TransactionIdGenerator
from .reconcile import CatalogueRepository, ReconciliationSession
from .records import RecordStore

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]


@dataclass
class CoreContext:
    """One database handle and the stores built on it, plus an optional UI notifier."""

    settings: Settings
    db: Database
    records: RecordStore
    audit: AuditStore
    catalogue_repo: CatalogueRepository
    roles: RoleDirectory
    notify: Optional[Notifier] = None
    ids: TransactionIdGenerator = field(default_factory=TransactionIdGenerator)
    _gates: OrderedDict[tuple[str, Optional[str]], PermissionGate] = field(
        default_factory=OrderedDict
    )

    @classmethod
    async def open(
        cls, config: Optional[Settings] = None, notify: Optional[Notifier] = None
    ) -> "CoreContext":
        """Open the database, create tables and seed the catalogue."""
        config = config or default_settings
        db = Database(config.database_path, config.remote_timeout_seconds)
        await db.initialize()
        context = cls(
            settings=config,
            db=db,
            records=RecordStore(db),
            audit=AuditStore(db),
            catalogue_repo=CatalogueRepository(db),
            roles=RoleDirectory(db),
            notify=notify,
        )
        await context.catalogue_repo.initialize()
        logger.info(f"Core context ready ({config.records_table}.{config.state_field})")
        return context

    async def close(self):
        self._gates.clear()
        await self.db.close()

    def gate_for(self, principal: Principal) -> PermissionGate:
        """
        One gate per principal and session, so cached grants last the session.

        At most ``gate_cache_size`` gates are kept; the least recently used
        one is dropped first.
        """
        key = (principal.id, principal.session_id)
        gate = self._gates.get(key)
        if gate is None or gate.principal != principal:
            gate = PermissionGate(principal, self.roles, self.audit)
            self._gates[key] = gate
        self._gates.move_to_end(key)
        while len(self._gates) > self.settings.gate_cache_size:
            self._gates.popitem(last=False)
        return gate

    def commit_engine(self, principal: Principal) -> CommitEngine:
        return CommitEngine(
            self.db,
            self.records,
            self.audit,
            self.gate_for(principal),
            config=self.settings,
            ids=self.ids,
            notify=self.notify,
        )

    def new_session(self) -> ReconciliationSession:
        return ReconciliationSession(self.records, self.catalogue_repo, config=self.settings)
