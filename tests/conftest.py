"""Pytest configuration and shared fixtures."""

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from staterecon.auth import Principal
from staterecon.config import Settings
from staterecon.context import CoreContext
from staterecon.reconcile import Catalogue, StateMatcher

# state value -> number of creator rows seeded with it
SEED_STATES = {
    "UP": 42,
    "Panjab": 3,
    "Madhya Predesh": 2,
    "orissa": 1,
    "Goa": 5,
}


def creator_rows(states: dict[str, int]) -> list[dict]:
    rows = []
    for state, count in states.items():
        for index in range(count):
            rows.append(
                {
                    "full_name": f"Creator {state} {index}",
                    "state": state,
                    "city": "Somewhere",
                    "instagram_handle": f"@creator_{len(rows)}",
                    "followers": 1000 + index,
                }
            )
    return rows


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create settings pointing at a temporary database."""
    return Settings(
        database_path=tmp_path / "test.db",
        remote_timeout_ms=5000,
        retry_delays_ms=[0, 0],
        cors_allow_origins=["*"],
    )


@pytest_asyncio.fixture
async def context(test_settings: Settings) -> AsyncGenerator[CoreContext, None]:
    """Open a core context on an empty database with the default catalogue."""
    ctx = await CoreContext.open(test_settings)
    yield ctx
    await ctx.close()


@pytest_asyncio.fixture
async def seeded_context(context: CoreContext) -> CoreContext:
    """Core context with creators spread over clean and unclean states."""
    await context.records.insert_creators(creator_rows(SEED_STATES))
    return context


@pytest.fixture
def catalogue() -> Catalogue:
    return Catalogue.default()


@pytest.fixture
def matcher(catalogue: Catalogue) -> StateMatcher:
    return StateMatcher(catalogue, min_score=50, max_candidates=5)


@pytest.fixture
def super_admin() -> Principal:
    return Principal(
        id="admin-1",
        email="admin@example.com",
        role="super_admin",
        session_id="sess-1",
        ip="127.0.0.1",
        user_agent="pytest",
    )


@pytest.fixture
def editor() -> Principal:
    return Principal(
        id="editor-1",
        email="editor@example.com",
        role="editor",
        session_id="sess-2",
        user_agent="pytest",
    )
