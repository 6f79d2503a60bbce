"""Record store operations used by the reconciliation core."""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from ..db import Database
from ..errors import RecordShapeError
from .models import ROW_TYPES, TEXT_FIELDS, decode_row

logger = logging.getLogger(__name__)


def _check_field(table: str, field: str):
    """Identifiers are interpolated into SQL, so only declared ones pass."""
    if table not in TEXT_FIELDS:
        raise RecordShapeError(f"Unknown table {table!r}")
    if field not in TEXT_FIELDS[table]:
        raise RecordShapeError(f"Field {field!r} of {table!r} is not a reconcilable text column")


class RecordStore:
    """Row-scoped reads and updates against the record tables."""

    def __init__(self, db: Database):
        self.db = db

    async def update_where(self, table: str, field: str, old_value: str, new_value: str) -> int:
        """Set ``field`` to ``new_value`` on every row where it equals ``old_value``."""
        _check_field(table, field)
        async with self.db.transaction():
            cursor = await self.db.execute(
                f"UPDATE {table} SET {field} = ?, updated_at = ? WHERE {field} = ?",
                (new_value, datetime.now(timezone.utc).isoformat(), old_value),
            )
        count = cursor.rowcount
        logger.debug(f"Updated {count} rows in {table}.{field}: {old_value!r} -> {new_value!r}")
        return count

    async def select_distinct(self, table: str, field: str) -> list[str]:
        """Distinct non-empty values of ``field``."""
        _check_field(table, field)
        async with self.db.snapshot():
            rows = await self.db.fetchall(
                f"SELECT DISTINCT {field} FROM {table} "
                f"WHERE {field} IS NOT NULL AND TRIM({field}) != '' ORDER BY {field}"
            )
        return [row[0] for row in rows]

    async def count_where(self, table: str, field: str, value: str) -> int:
        _check_field(table, field)
        async with self.db.snapshot():
            row = await self.db.fetchone(
                f"SELECT COUNT(*) FROM {table} WHERE {field} = ?", (value,)
            )
        return row[0] if row else 0

    async def list_where(
        self, table: str, field: str, value: str, limit: int = 100
    ) -> list[BaseModel]:
        """Rows where ``field`` equals ``value``, decoded through their row type."""
        _check_field(table, field)
        async with self.db.snapshot():
            rows = await self.db.fetchall(
                f"SELECT * FROM {table} WHERE {field} = ? ORDER BY id LIMIT ?", (value, limit)
            )
        return [decode_row(table, row) for row in rows]

    async def insert_creators(self, creators: Iterable[dict[str, Any]]) -> list[int]:
        """Insert creator rows (used by imports and seeding). Returns the new ids."""
        columns = [name for name in ROW_TYPES["creators"].model_fields if name != "id"]
        ids: list[int] = []
        async with self.db.transaction():
            for creator in creators:
                unknown = set(creator) - set(columns)
                if unknown:
                    raise RecordShapeError(f"Unknown creator columns: {sorted(unknown)}")
                values = [self._to_column(creator.get(name)) for name in columns]
                cursor = await self.db.execute(
                    f"INSERT INTO creators ({', '.join(columns)}) "
                    f"VALUES ({', '.join('?' for _ in columns)})",
                    values,
                )
                ids.append(cursor.lastrowid)
        logger.info(f"Inserted {len(ids)} creators")
        return ids

    @staticmethod
    def _to_column(value: Optional[Any]) -> Optional[Any]:
        if isinstance(value, datetime):
            return value.isoformat()
        return value
