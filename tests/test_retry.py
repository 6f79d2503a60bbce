"""Tests for the caller retry helper."""

from unittest.mock import AsyncMock, patch

import pytest

from staterecon.engine import retry_transient
from staterecon.errors import PermissionDenied, TransientError


class TestRetryTransient:
    """Test retrying transient failures."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        """A successful call is not retried."""
        operation = AsyncMock(return_value="ok")
        assert await retry_transient(operation, [0, 0]) == "ok"
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        """Transient failures are retried."""
        operation = AsyncMock(side_effect=[TransientError("busy"), "ok"])
        assert await retry_transient(operation, [0, 0]) == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_delays(self):
        """After every delay is used the error propagates."""
        operation = AsyncMock(side_effect=TransientError("busy"))
        with pytest.raises(TransientError):
            await retry_transient(operation, [0, 0])
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        """Only transient errors are retried."""
        operation = AsyncMock(side_effect=PermissionDenied("p1", "super_admin"))
        with pytest.raises(PermissionDenied):
            await retry_transient(operation, [0, 0])
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_waits_between_attempts(self):
        """Delays are given in milliseconds."""
        operation = AsyncMock(side_effect=[TransientError("busy"), TransientError("busy"), "ok"])
        with patch("staterecon.engine.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await retry_transient(operation, [250, 1000]) == "ok"
        assert [call.args[0] for call in sleep.await_args_list] == [0.25, 1.0]
