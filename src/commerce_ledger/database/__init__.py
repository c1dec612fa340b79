"""Database module for ledger persistence."""

from .models import (
    AccountingPeriod,
    Income,
    Outcome,
    Base,
    PeriodStatus,
    IncomeStatus,
    OutcomeStatus,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    create_tables,
    get_async_session_factory,
    get_db_context,
    DatabaseManager,
)
from .repository import (
    IncomeRepository,
    OutcomeRepository,
    PeriodRepository,
)

__all__ = [
    # Models
    "AccountingPeriod",
    "Income",
    "Outcome",
    "Base",
    "PeriodStatus",
    "IncomeStatus",
    "OutcomeStatus",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "create_tables",
    "get_async_session_factory",
    "get_db_context",
    "DatabaseManager",
    # Repositories
    "IncomeRepository",
    "OutcomeRepository",
    "PeriodRepository",
]
