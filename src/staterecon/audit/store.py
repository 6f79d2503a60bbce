"""Append-only audit store backed by the shared database."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import aiosqlite

from ..db import Database
from ..errors import AuditWriteFailed, TransientError
from .models import (
    AuditLogEntry,
    AuditMetadata,
    AuditPage,
    AuditQuery,
    AuditStatistics,
    BatchAuditDetail,
    BatchAuditHeader,
    BatchView,
    DetailStatus,
)
from .risk import RiskLevel

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = (
    "id, action_type, table_name, record_id, old_value, new_value, principal_id, "
    "principal_email, principal_role, ip, user_agent, timestamp, risk_level, "
    "started_at, finished_at, total_attempted, total_succeeded, total_failed, metadata"
)
_ENTRY_PLACEHOLDERS = ", ".join("?" for _ in _ENTRY_COLUMNS.split(","))


def _ts(value: Optional[datetime]) -> Optional[str]:
    """UTC ISO form with fixed precision so stored timestamps sort as text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _like(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class AuditStore:
    """
    Append-only log of audit entries and batch details.

    There are no update or delete operations; the schema's triggers reject them
    as well. Writes join the caller's transaction when one is open.
    """

    def __init__(self, db: Database):
        self.db = db

    # Writes

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Append a single entry."""
        try:
            async with self.db.transaction():
                await self.db.execute(
                    f"INSERT INTO audit_log ({_ENTRY_COLUMNS}) VALUES ({_ENTRY_PLACEHOLDERS})",
                    self._entry_params(entry),
                )
        except (aiosqlite.Error, TransientError) as exc:
            raise AuditWriteFailed(f"Failed to append audit entry {entry.action_type}: {exc}") from exc
        logger.info(
            f"Audit: {entry.action_type} on {entry.table_name or '-'}"
            f"/{entry.record_id or '-'} by {entry.principal_email or entry.principal_id}"
        )
        return entry

    async def append_batch(
        self, header: BatchAuditHeader, details: Sequence[BatchAuditDetail]
    ) -> BatchView:
        """Append a batch header and its details atomically."""
        for expected, detail in enumerate(details, start=1):
            if detail.batch_id != header.id or detail.sequence_number != expected:
                raise AuditWriteFailed(
                    f"Detail {detail.sequence_number} does not belong at position {expected} "
                    f"of batch {header.id}"
                )

        try:
            async with self.db.transaction():
                await self.db.execute(
                    f"INSERT INTO audit_log ({_ENTRY_COLUMNS}) VALUES ({_ENTRY_PLACEHOLDERS})",
                    self._header_params(header),
                )
                if details:
                    await self.db.executemany(
                        """
                        INSERT INTO audit_batch_detail
                        (batch_id, sequence_number, record_identifier, field_name, old_value,
                         new_value, updated_count, status, error_message)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                d.batch_id,
                                d.sequence_number,
                                d.record_identifier,
                                d.field_name,
                                d.old_value,
                                d.new_value,
                                d.updated_count,
                                d.status.value,
                                d.error_message,
                            )
                            for d in details
                        ],
                    )
        except (aiosqlite.Error, TransientError) as exc:
            raise AuditWriteFailed(f"Failed to append batch {header.id}: {exc}") from exc

        logger.info(
            f"Audit batch {header.id}: {header.action_type} attempted={header.total_attempted} "
            f"succeeded={header.total_succeeded} failed={header.total_failed} "
            f"details={len(details)}"
        )
        return BatchView(header=header, details=list(details))

    # Reads

    async def history_for_record(
        self, table_name: str, record_id: str, limit: int = 50
    ) -> list[AuditLogEntry]:
        """Entries touching a record, newest first. Includes batches that list it in a detail."""
        async with self.db.snapshot():
            rows = await self.db.fetchall(
                f"""
                SELECT {_ENTRY_COLUMNS} FROM audit_log
                WHERE table_name = ?
                  AND (record_id = ? OR id IN (
                      SELECT batch_id FROM audit_batch_detail WHERE record_identifier = ?))
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ?
                """,
                (table_name, record_id, record_id, limit),
            )
        return [self._row_to_entry(row) for row in rows]

    async def query(self, query: Optional[AuditQuery] = None) -> AuditPage:
        """Filtered, paginated activity feed, newest first."""
        query = query or AuditQuery()
        conditions = []
        params: list[Any] = []

        if query.search:
            term = _like(query.search)
            conditions.append(
                "(LOWER(action_type) LIKE ? ESCAPE '\\' "
                "OR LOWER(COALESCE(principal_email, '')) LIKE ? ESCAPE '\\' "
                "OR LOWER(COALESCE(table_name, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([term, term, term])
        if query.action_types:
            conditions.append(f"action_type IN ({', '.join('?' for _ in query.action_types)})")
            params.extend(query.action_types)
        if query.risk_levels:
            conditions.append(f"risk_level IN ({', '.join('?' for _ in query.risk_levels)})")
            params.extend(level.value for level in query.risk_levels)
        if query.principal_roles:
            conditions.append(
                f"principal_role IN ({', '.join('?' for _ in query.principal_roles)})"
            )
            params.extend(query.principal_roles)
        if query.start:
            conditions.append("timestamp >= ?")
            params.append(_ts(query.start))
        if query.end:
            conditions.append("timestamp <= ?")
            params.append(_ts(query.end))

        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        offset = (query.page - 1) * query.page_size

        async with self.db.snapshot():
            count_row = await self.db.fetchone(f"SELECT COUNT(*) FROM audit_log{where}", params)
            rows = await self.db.fetchall(
                f"SELECT {_ENTRY_COLUMNS} FROM audit_log{where} "
                f"ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?",
                [*params, query.page_size, offset],
            )

        return AuditPage(
            items=[self._row_to_entry(row) for row in rows],
            total=count_row[0] if count_row else 0,
            page=query.page,
            page_size=query.page_size,
        )

    async def get_batch(self, batch_id: str) -> Optional[BatchAuditHeader]:
        async with self.db.snapshot():
            row = await self.db.fetchone(
                f"SELECT {_ENTRY_COLUMNS} FROM audit_log WHERE id = ? AND started_at IS NOT NULL",
                (batch_id,),
            )
        return self._row_to_header(row) if row else None

    async def details_for_batch(self, batch_id: str) -> list[BatchAuditDetail]:
        async with self.db.snapshot():
            rows = await self.db.fetchall(
                """
                SELECT batch_id, sequence_number, record_identifier, field_name, old_value,
                       new_value, updated_count, status, error_message
                FROM audit_batch_detail
                WHERE batch_id = ?
                ORDER BY sequence_number
                """,
                (batch_id,),
            )
        return [
            BatchAuditDetail(
                batch_id=row["batch_id"],
                sequence_number=row["sequence_number"],
                record_identifier=row["record_identifier"],
                field_name=row["field_name"],
                old_value=row["old_value"],
                new_value=row["new_value"],
                updated_count=row["updated_count"],
                status=DetailStatus(row["status"]),
                error_message=row["error_message"],
            )
            for row in rows
        ]

    async def activity_for_principal(self, principal_id: str, limit: int = 100) -> list[AuditLogEntry]:
        """A principal's recent activity, newest first."""
        async with self.db.snapshot():
            rows = await self.db.fetchall(
                f"SELECT {_ENTRY_COLUMNS} FROM audit_log WHERE principal_id = ? "
                f"ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (principal_id, limit),
            )
        return [self._row_to_entry(row) for row in rows]

    async def statistics(self, principal_id: Optional[str] = None) -> AuditStatistics:
        where, params = ("WHERE principal_id = ?", (principal_id,)) if principal_id else ("", ())
        stats = AuditStatistics()
        async with self.db.snapshot():
            for column, target in (
                ("action_type", stats.by_action_type),
                ("COALESCE(table_name, '')", stats.by_table),
                ("risk_level", stats.by_risk_level),
            ):
                rows = await self.db.fetchall(
                    f"SELECT {column} AS bucket, COUNT(*) AS n FROM audit_log {where} GROUP BY {column}",
                    params,
                )
                target.update({row["bucket"]: row["n"] for row in rows})
            row = await self.db.fetchone(
                f"SELECT COUNT(*), MIN(timestamp), MAX(timestamp) FROM audit_log {where}", params
            )
        if row:
            stats.total = row[0]
            stats.earliest = _parse_ts(row[1])
            stats.latest = _parse_ts(row[2])
        return stats

    # Row mapping

    def _entry_params(self, entry: AuditLogEntry) -> tuple:
        return (
            entry.id,
            entry.action_type,
            entry.table_name,
            entry.record_id,
            entry.old_value,
            entry.new_value,
            entry.principal_id,
            entry.principal_email,
            entry.principal_role,
            entry.ip,
            entry.metadata.user_agent,
            _ts(entry.timestamp),
            entry.risk_level.value,
            None,
            None,
            None,
            None,
            None,
            entry.metadata.model_dump_json(exclude_none=True),
        )

    def _header_params(self, header: BatchAuditHeader) -> tuple:
        return (
            header.id,
            header.action_type,
            header.table_name,
            None,
            None,
            None,
            header.principal_id,
            header.principal_email,
            header.principal_role,
            header.ip,
            header.user_agent,
            _ts(header.started_at),
            header.risk_level.value,
            _ts(header.started_at),
            _ts(header.finished_at),
            header.total_attempted,
            header.total_succeeded,
            header.total_failed,
            header.metadata.model_dump_json(exclude_none=True),
        )

    def _metadata(self, raw: Optional[str]) -> AuditMetadata:
        return AuditMetadata(**json.loads(raw)) if raw else AuditMetadata()

    def _row_to_entry(self, row) -> AuditLogEntry:
        return AuditLogEntry(
            id=row["id"],
            action_type=row["action_type"],
            table_name=row["table_name"],
            record_id=row["record_id"],
            old_value=row["old_value"],
            new_value=row["new_value"],
            principal_id=row["principal_id"],
            principal_email=row["principal_email"],
            principal_role=row["principal_role"],
            ip=row["ip"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            risk_level=RiskLevel(row["risk_level"]),
            metadata=self._metadata(row["metadata"]),
        )

    def _row_to_header(self, row) -> BatchAuditHeader:
        return BatchAuditHeader(
            id=row["id"],
            action_type=row["action_type"],
            table_name=row["table_name"],
            principal_id=row["principal_id"],
            principal_email=row["principal_email"],
            principal_role=row["principal_role"],
            ip=row["ip"],
            user_agent=row["user_agent"],
            started_at=datetime.fromisoformat(row["started_at"]),
            finished_at=datetime.fromisoformat(row["finished_at"]),
            total_attempted=row["total_attempted"],
            total_succeeded=row["total_succeeded"],
            total_failed=row["total_failed"],
            risk_level=RiskLevel(row["risk_level"]),
            metadata=self._metadata(row["metadata"]),
        )
