# commerce_ledger package
__version__ = "0.1.0"

from .database import (
    AccountingPeriod,
    Income,
    Outcome,
    PeriodStatus,
    IncomeStatus,
    OutcomeStatus,
    init_db,
    close_db,
    get_db,
)
from .exceptions import (
    LedgerError,
    ValidationError,
    NotFoundError,
    StateConflictError,
)
from .events import DomainEvent, EventSink, LoggingEventSink

from .accounting import (
    AccountingPeriodService,
    RefundService,
    PeriodAggregator,
    TransactionClassifier,
    PeriodTotals,
    RefundResult,
    RefundReason,
    RefundType,
    ConceptCategory,
)
