"""Accounting periods and refund reconciliation for a commerce ledger.

This module closes and reconciles a commerce's periodic ledger.

Features:
- Classify outcomes into expenses, payment refunds and commission reversals
- Aggregate confirmed transactions into period totals (gross method)
- Open, close, reopen and lock accounting periods
- Process refunds with proportional professional commission reversal
"""

from .models import (
    ConceptCategory,
    RefundType,
    RefundReason,
    PeriodTotals,
    ReconciliationData,
    RefundMetadata,
    RefundResult,
)
from .classifier import TransactionClassifier, classify
from .aggregator import (
    PeriodAggregator,
    compute_net_amount,
    income_counts,
    outcome_counts,
)
from .locks import KeyedLock, period_locks, income_locks
from .period_service import AccountingPeriodService
from .refund_service import RefundService

__all__ = [
    # Models
    "ConceptCategory",
    "RefundType",
    "RefundReason",
    "PeriodTotals",
    "ReconciliationData",
    "RefundMetadata",
    "RefundResult",
    # Core Components
    "TransactionClassifier",
    "classify",
    "PeriodAggregator",
    "compute_net_amount",
    "income_counts",
    "outcome_counts",
    "KeyedLock",
    "period_locks",
    "income_locks",
    # Services
    "AccountingPeriodService",
    "RefundService",
]
