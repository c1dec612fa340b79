"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import datetime
from decimal import Decimal
from typing import List

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from commerce_ledger.database import (
    Base,
    IncomeRepository,
    OutcomeRepository,
    IncomeStatus,
    OutcomeStatus,
    create_async_engine,
    get_async_session_factory,
)
from commerce_ledger.events import DomainEvent

COMMERCE_ID = "commerce-1"


class RecordingEventSink:
    """Event sink that keeps every published event in memory."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [e.event_type for e in self.events]


class FailingEventSink:
    """Event sink whose broker is always down."""

    def __init__(self):
        self.attempts = 0

    async def publish(self, event: DomainEvent) -> None:
        self.attempts += 1
        raise RuntimeError("event bus unavailable")


@pytest.fixture
def commerce_id() -> str:
    return COMMERCE_ID


@pytest.fixture
def event_sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def failing_sink() -> FailingEventSink:
    return FailingEventSink()


@pytest.fixture
def mock_api_key():
    """Set up API key for authentication."""
    from unittest.mock import patch

    with patch.dict(os.environ, {"API_KEY": "test_api_key_12345"}):
        yield "test_api_key_12345"


@pytest.fixture
def auth_headers(mock_api_key):
    """Return headers with authentication."""
    return {"Authorization": f"Bearer {mock_api_key}"}


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine."""
    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def income_factory(db_session):
    """Create committed incomes with sensible defaults."""
    async def _create(**overrides):
        fields = {
            "commerce_id": COMMERCE_ID,
            "client_id": "client-1",
            "amount": Decimal("100"),
            "status": IncomeStatus.CONFIRMED.value,
            "professional_id": "prof-1",
            "professional_commission": Decimal("20"),
            "commission_paid": False,
            "created_at": datetime(2025, 1, 15, 10, 0),
            "paid_at": datetime(2025, 1, 15, 10, 0),
        }
        fields.update(overrides)
        income = await IncomeRepository(db_session).create(**fields)
        await db_session.commit()
        return income

    return _create


@pytest.fixture
def outcome_factory(db_session):
    """Create committed outcomes with sensible defaults."""
    async def _create(**overrides):
        fields = {
            "commerce_id": COMMERCE_ID,
            "amount": Decimal("300"),
            "concept_type": "rent",
            "type": "RENT",
            "description": "Arriendo local",
            "status": OutcomeStatus.CONFIRMED.value,
            "created_at": datetime(2025, 1, 10, 9, 0),
            "paid_at": datetime(2025, 1, 10, 9, 0),
        }
        fields.update(overrides)
        outcome = await OutcomeRepository(db_session).create(**fields)
        await db_session.commit()
        return outcome

    return _create
