"""Shared fixtures for storage tests."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def mock_connection() -> AsyncMock:
    """Connection handed out by mock_database.transaction()."""
    conn = AsyncMock()
    conn.fetchval = AsyncMock(return_value=7)
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    return conn


@pytest.fixture
def mock_database(mock_connection: AsyncMock) -> AsyncMock:
    """Mock Database instance matching the Database API."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value="CREATE TABLE")

    @asynccontextmanager
    async def transaction():
        yield mock_connection

    db.transaction = transaction
    return db
