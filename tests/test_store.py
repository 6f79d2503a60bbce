"""Tests for the database handle and record store."""

import asyncio

import aiosqlite
import pytest

from staterecon.db import Database
from staterecon.errors import (
    InvariantViolation,
    RecordShapeError,
    TransactionAborted,
    TransientError,
)
from staterecon.records import CreatorRow, decode_row

_REFUSE_ATLANTIS = (
    "CREATE TRIGGER refuse_atlantis BEFORE INSERT ON creators "
    "WHEN NEW.state = 'Atlantis' "
    "BEGIN SELECT RAISE(ROLLBACK, 'no such state'); END"
)


class TestDatabase:
    """Test transactions and remote-call guards."""

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, context):
        """An exception inside a transaction discards its writes."""
        with pytest.raises(RuntimeError):
            async with context.db.transaction():
                await context.records.insert_creators([{"full_name": "A", "state": "UP"}])
                raise RuntimeError("boom")
        assert await context.records.count_where("creators", "state", "UP") == 0

    @pytest.mark.asyncio
    async def test_nested_transaction_joins(self, context):
        """Inner transactions join the outer one and commit with it."""
        async with context.db.transaction():
            assert context.db.in_transaction
            await context.records.insert_creators([{"full_name": "A", "state": "UP"}])
            await context.records.update_where("creators", "state", "UP", "Uttar Pradesh")
        assert not context.db.in_transaction
        assert await context.records.count_where("creators", "state", "Uttar Pradesh") == 1

    @pytest.mark.asyncio
    async def test_readers_wait_for_commit(self, context):
        """A reader in another task sees only committed rows."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def writer():
            async with context.db.transaction():
                await context.records.insert_creators([{"full_name": "A", "state": "UP"}])
                started.set()
                await release.wait()

        task = asyncio.create_task(writer())
        await started.wait()
        reader = asyncio.create_task(context.records.count_where("creators", "state", "UP"))
        await asyncio.sleep(0.01)
        assert not reader.done()
        release.set()
        await task
        assert await reader == 1

    @pytest.mark.asyncio
    async def test_savepoint_undoes_only_its_writes(self, context):
        """An error inside a savepoint discards that part and keeps the rest."""
        async with context.db.transaction():
            await context.records.insert_creators([{"full_name": "A", "state": "UP"}])
            with pytest.raises(ValueError):
                async with context.db.savepoint("part"):
                    await context.records.insert_creators([{"full_name": "B", "state": "Goa"}])
                    await context.records.update_where("creators", "state", "UP", "Goa")
                    raise ValueError("bad row")
        assert await context.records.count_where("creators", "state", "UP") == 1
        assert await context.records.count_where("creators", "state", "Goa") == 0

    @pytest.mark.asyncio
    async def test_savepoint_needs_transaction(self, context):
        """Savepoints only exist inside a transaction."""
        with pytest.raises(InvariantViolation):
            async with context.db.savepoint("part"):
                pass

    @pytest.mark.asyncio
    async def test_database_rollback_inside_savepoint(self, context):
        """A trigger that rolls back the whole transaction aborts it entirely."""
        await context.db.execute(_REFUSE_ATLANTIS)
        with pytest.raises(TransactionAborted):
            async with context.db.transaction():
                await context.records.insert_creators([{"full_name": "A", "state": "UP"}])
                async with context.db.savepoint("part"):
                    await context.records.insert_creators(
                        [{"full_name": "B", "state": "Atlantis"}]
                    )
        assert not context.db.connection.in_transaction
        assert await context.records.count_where("creators", "state", "UP") == 0

    @pytest.mark.asyncio
    async def test_commit_refused_when_transaction_ended(self, context):
        """A body that swallows a database rollback cannot commit."""
        await context.db.execute(_REFUSE_ATLANTIS)
        with pytest.raises(TransactionAborted):
            async with context.db.transaction():
                await context.records.insert_creators([{"full_name": "A", "state": "UP"}])
                try:
                    await context.records.insert_creators(
                        [{"full_name": "B", "state": "Atlantis"}]
                    )
                except aiosqlite.Error:
                    pass
        assert await context.records.count_where("creators", "state", "UP") == 0
    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, tmp_path):
        """A call exceeding the timeout fails with TransientError."""
        db = Database(tmp_path / "slow.db", timeout_seconds=0.01)
        with pytest.raises(TransientError):
            await db._guard(asyncio.sleep(1))

    @pytest.mark.asyncio
    async def test_closed_connection_is_transient(self, tmp_path):
        """Using a closed handle fails with TransientError."""
        db = Database(tmp_path / "closed.db")
        await db.initialize()
        await db.close()
        with pytest.raises(TransientError):
            await db.fetchone("SELECT 1")


class TestRecordStore:
    """Test record store operations."""

    @pytest.mark.asyncio
    async def test_select_distinct_skips_blank(self, context):
        """Distinct values exclude null and blank states."""
        await context.records.insert_creators(
            [
                {"full_name": "A", "state": "UP"},
                {"full_name": "B", "state": "UP"},
                {"full_name": "C", "state": "Goa"},
                {"full_name": "D", "state": "  "},
                {"full_name": "E"},
            ]
        )
        assert await context.records.select_distinct("creators", "state") == ["Goa", "UP"]

    @pytest.mark.asyncio
    async def test_update_where_counts_rows(self, seeded_context):
        """Update returns the number of rows changed."""
        records = seeded_context.records
        assert await records.update_where("creators", "state", "UP", "Uttar Pradesh") == 42
        assert await records.update_where("creators", "state", "UP", "Uttar Pradesh") == 0
        rows = await records.list_where("creators", "state", "Uttar Pradesh", limit=5)
        assert len(rows) == 5
        assert all(isinstance(row, CreatorRow) and row.updated_at for row in rows)

    @pytest.mark.asyncio
    async def test_update_is_exact_match(self, seeded_context):
        """Only rows equal to the old value change."""
        records = seeded_context.records
        assert await records.update_where("creators", "state", "up", "Uttar Pradesh") == 0
        assert await records.count_where("creators", "state", "UP") == 42

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, context):
        """Identifiers outside the row types are refused."""
        with pytest.raises(RecordShapeError):
            await context.records.update_where("creators", "full_name; DROP TABLE x", "a", "b")
        with pytest.raises(RecordShapeError):
            await context.records.select_distinct("campaigns", "state")

    @pytest.mark.asyncio
    async def test_insert_unknown_column(self, context):
        """Creator rows with unknown columns are refused."""
        with pytest.raises(RecordShapeError):
            await context.records.insert_creators([{"full_name": "A", "tiktok": "@a"}])


class TestDecodeRow:
    """Test the row decoding boundary."""

    def test_valid_row(self):
        """A row with the declared columns decodes."""
        row = decode_row("creators", {"id": 1, "full_name": "A", "state": "Goa"})
        assert row.state == "Goa"

    def test_unknown_column(self):
        """A row with an unexpected column is rejected."""
        with pytest.raises(RecordShapeError):
            decode_row("creators", {"id": 1, "full_name": "A", "tiktok": "@a"})

    def test_missing_required_column(self):
        """A row without its required columns is rejected."""
        with pytest.raises(RecordShapeError):
            decode_row("creators", {"state": "Goa"})

    def test_unknown_table(self):
        """Tables without a row type are rejected."""
        with pytest.raises(RecordShapeError):
            decode_row("campaigns", {"id": 1})
