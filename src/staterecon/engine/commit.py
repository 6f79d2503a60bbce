"""Applies an approved mapping set to the record store as one audited batch."""

import logging
import secrets
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import aiosqlite
from pydantic import BaseModel, Field

from ..audit import (
    BULK_UPDATE,
    OPERATION_FAILED,
    AuditLogEntry,
    AuditMetadata,
    AuditStore,
    BatchAuditDetail,
    BatchAuditHeader,
    DetailStatus,
    RiskLevel,
)
from ..auth import PermissionGate
from ..config import Settings, settings as default_settings
from ..db import Database
from ..errors import (
    AuditWriteFailed,
    RecordShapeError,
    StateReconError,
    TransactionAborted,
    TransientError,
)
from ..reconcile.mapping_set import MappingSet
from ..reconcile.models import MappingEntry
from ..records import RecordStore

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionIdGenerator:
    """
    Produces ``txn_<epoch-ms>_<seq>_<nonce>`` ids.

    The (epoch-ms, seq) pair strictly increases within a process even if the
    wall clock steps backwards.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last_ms = 0
        self._seq = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            self._last_ms = max(self._last_ms, int(self._clock() * 1000))
            self._seq += 1
            return f"txn_{self._last_ms}_{self._seq:06d}_{secrets.token_hex(4)}"


transaction_ids = TransactionIdGenerator()


class EntryResult(BaseModel):
    """Outcome for one approved entry."""

    unclean_value: str
    canonical_id: int
    canonical_name: str
    updated_count: int = 0
    confidence: int = 0
    auto_selected: bool = False
    user_overridden: bool = False
    status: DetailStatus = DetailStatus.COMPLETED
    error_message: Optional[str] = None


class CommitResult(BaseModel):
    """Response of a successful batch commit."""

    success: bool = True
    transaction_id: str
    audit_id: str
    session_id: str
    total_updated: int = 0
    total_attempted: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    results: list[EntryResult] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime


class CommitEngine:
    """
    Writes approved mappings and their audit batch inside one transaction.

    Either every row update plus the batch header and details commit together,
    or nothing does and a single OPERATION_FAILED entry records the attempt.
    """

    def __init__(
        self,
        db: Database,
        records: RecordStore,
        audit: AuditStore,
        gate: PermissionGate,
        config: Optional[Settings] = None,
        ids: Optional[TransactionIdGenerator] = None,
        notify: Optional[Notifier] = None,
    ):
        self.db = db
        self.records = records
        self.audit = audit
        self.gate = gate
        self.settings = config or default_settings
        self.ids = ids or transaction_ids
        self.notify = notify

    @property
    def principal(self):
        return self.gate.principal

    async def commit(self, mapping_set: MappingSet) -> CommitResult:
        """Apply every approved entry of ``mapping_set``."""
        role = await self.gate.require(self.settings.commit_required_role)

        table = self.settings.records_table
        field = self.settings.state_field
        transaction_id = self.ids.next()
        session_id = self.principal.session_id or str(uuid.uuid4())
        batch_id = str(uuid.uuid4())
        entries = mapping_set.committable_entries()
        started_at = _utc_now()

        logger.info(
            f"Committing {len(entries)} mappings to {table}.{field} "
            f"(transaction={transaction_id}, principal={self.principal.id})"
        )

        try:
            async with self.db.transaction():
                results: list[EntryResult] = []
                details: list[BatchAuditDetail] = []
                attempted = succeeded = failed = 0

                for sequence, entry in enumerate(entries, start=1):
                    result, detail, matched = await self._apply(
                        batch_id, sequence, entry, table, field
                    )
                    results.append(result)
                    details.append(detail)
                    if result.status == DetailStatus.COMPLETED:
                        weight = max(result.updated_count, 1)
                        attempted += weight
                        succeeded += weight
                    else:
                        weight = max(matched, 1)
                        attempted += weight
                        failed += weight

                finished_at = _utc_now()
                header = BatchAuditHeader(
                    id=batch_id,
                    action_type=BULK_UPDATE,
                    table_name=table,
                    principal_id=self.principal.id,
                    principal_email=self.principal.email,
                    principal_role=role,
                    ip=self.principal.ip,
                    user_agent=self.principal.user_agent,
                    started_at=started_at,
                    finished_at=finished_at,
                    total_attempted=attempted,
                    total_succeeded=succeeded,
                    total_failed=failed,
                    risk_level=RiskLevel.HIGH,
                    metadata=AuditMetadata(
                        transaction_id=transaction_id,
                        session_id=session_id,
                        user_agent=self.principal.user_agent,
                        field_name=field,
                        entry_count=len(entries),
                    ),
                )
                await self.audit.append_batch(header, details)
        except (StateReconError, aiosqlite.Error) as exc:
            logger.warning(f"Commit {transaction_id} rolled back: {exc}")
            await self._record_failure(exc, transaction_id, session_id, table, role)
            self._notify("error", f"State update failed and was rolled back: {exc}")
            if isinstance(exc, StateReconError):
                raise
            raise TransactionAborted(f"Commit {transaction_id} aborted: {exc}") from exc

        mapping_set.mark_committed()
        total_updated = sum(result.updated_count for result in results)
        logger.info(
            f"Committed {transaction_id}: updated={total_updated} attempted={attempted} "
            f"succeeded={succeeded} failed={failed}"
        )
        self._notify("success", f"Updated {total_updated} records across {len(entries)} states")

        return CommitResult(
            transaction_id=transaction_id,
            audit_id=batch_id,
            session_id=session_id,
            total_updated=total_updated,
            total_attempted=attempted,
            total_succeeded=succeeded,
            total_failed=failed,
            results=results,
            started_at=started_at,
            finished_at=finished_at,
        )

    async def _apply(
        self, batch_id: str, sequence: int, entry: MappingEntry, table: str, field: str
    ) -> tuple[EntryResult, BatchAuditDetail, int]:
        canonical = entry.chosen_canonical_name
        matched = 0
        try:
            # A row error undoes this entry only; TransactionAborted ends the batch.
            async with self.db.savepoint(f"entry_{sequence}"):
                matched = await self.records.count_where(table, field, entry.unclean_value)
                updated = await self.records.update_where(
                    table, field, entry.unclean_value, canonical
                )
        except TransientError:
            raise
        except (aiosqlite.Error, RecordShapeError) as exc:
            logger.warning(f"Row error updating {entry.unclean_value!r} -> {canonical!r}: {exc}")
            result = self._result(entry, 0, DetailStatus.ERROR, str(exc))
            detail = BatchAuditDetail(
                batch_id=batch_id,
                sequence_number=sequence,
                record_identifier=entry.unclean_value,
                field_name=field,
                old_value=entry.unclean_value,
                new_value=canonical,
                updated_count=0,
                status=DetailStatus.ERROR,
                error_message=str(exc),
            )
            return result, detail, matched

        # Nothing left under the unclean spelling: the rows already hold the canonical name.
        old_value = entry.unclean_value if updated else canonical
        detail = BatchAuditDetail(
            batch_id=batch_id,
            sequence_number=sequence,
            record_identifier=entry.unclean_value,
            field_name=field,
            old_value=old_value,
            new_value=canonical,
            updated_count=updated,
            status=DetailStatus.COMPLETED,
        )
        return self._result(entry, updated, DetailStatus.COMPLETED), detail, matched

    @staticmethod
    def _result(
        entry: MappingEntry, updated: int, status: DetailStatus, error: Optional[str] = None
    ) -> EntryResult:
        return EntryResult(
            unclean_value=entry.unclean_value,
            canonical_id=entry.chosen_canonical_id,
            canonical_name=entry.chosen_canonical_name,
            updated_count=updated,
            confidence=entry.confidence,
            auto_selected=entry.auto_selected,
            user_overridden=entry.user_overridden,
            status=status,
            error_message=error,
        )

    async def _record_failure(
        self, exc: Exception, transaction_id: str, session_id: str, table: str, role: str
    ):
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            action_type=OPERATION_FAILED,
            table_name=table,
            principal_id=self.principal.id,
            principal_email=self.principal.email,
            principal_role=role,
            ip=self.principal.ip,
            metadata=AuditMetadata(
                transaction_id=transaction_id,
                session_id=session_id,
                user_agent=self.principal.user_agent,
                error=str(exc),
                error_type=type(exc).__name__,
            ),
        )
        try:
            await self.audit.append(entry)
        except (AuditWriteFailed, TransientError):
            logger.exception(f"Could not record failed commit {transaction_id}")

    def _notify(self, level: str, message: str):
        if self.notify is not None:
            self.notify(level, message)
