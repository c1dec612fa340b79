"""Aggregation of a commerce's transactions into period totals.

Records are fetched broadly (every income/outcome of the commerce) and then
filtered in memory by the predicates below. Totals follow the gross method:
an income always contributes its full amount and commission, and refunds and
commission reversals are applied as separate contra-entries, so

    net_amount = total_incomes - total_outcomes - total_commissions
                 - total_refunds + total_commission_reversals

A fully refunded income with a matching full commission reversal therefore
nets to exactly zero.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from ..database.models import IncomeStatus, OutcomeStatus
from .classifier import TransactionClassifier
from .models import ConceptCategory, PeriodTotals

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def to_money(value: Any) -> Decimal:
    """Coerce an amount to Decimal, treating None as zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _status(record: Any) -> Optional[str]:
    status = getattr(record, "status", None)
    return status.value if hasattr(status, "value") else status


def _within(moment: Optional[datetime], start: datetime, end: datetime) -> bool:
    return moment is not None and start <= moment <= end


def income_in_period(income: Any, start: datetime, end: datetime) -> bool:
    """True when the income was paid inside [start, end]."""
    return _within(getattr(income, "paid_at", None), start, end)


def income_counts(income: Any, start: datetime, end: datetime) -> bool:
    """True when the income contributes to the period totals."""
    return (
        _status(income) == IncomeStatus.CONFIRMED.value
        and income_in_period(income, start, end)
    )


def outcome_in_period(
    outcome: Any,
    start: datetime,
    end: datetime,
    category: ConceptCategory,
) -> bool:
    """True when the outcome belongs to [start, end].

    Refunds and reversals fall back to ``created_at`` when unpaid, and with
    neither date they belong to the period they were generated against.
    """
    paid_at = getattr(outcome, "paid_at", None)
    if category is ConceptCategory.EXPENSE:
        return _within(paid_at, start, end)

    moment = paid_at or getattr(outcome, "created_at", None)
    if moment is None:
        return True
    return _within(moment, start, end)


def outcome_counts(
    outcome: Any,
    start: datetime,
    end: datetime,
    category: ConceptCategory,
) -> bool:
    """True when the outcome contributes to the period totals.

    Refund-class outcomes count regardless of status; expenses only once
    CONFIRMED.
    """
    if not outcome_in_period(outcome, start, end, category):
        return False
    if category is not ConceptCategory.EXPENSE:
        return True
    return _status(outcome) == OutcomeStatus.CONFIRMED.value


def compute_net_amount(
    total_incomes: Decimal,
    total_outcomes: Decimal,
    total_commissions: Decimal,
    total_refunds: Decimal,
    total_commission_reversals: Decimal,
) -> Decimal:
    return (
        total_incomes
        - total_outcomes
        - total_commissions
        - total_refunds
        + total_commission_reversals
    )


class PeriodAggregator:
    """Turns raw income/outcome records into a PeriodTotals snapshot."""

    def __init__(self, classifier: Optional[TransactionClassifier] = None):
        """Initialize the aggregator.

        Args:
            classifier: Outcome classifier. A default one is created if omitted.
        """
        self.classifier = classifier or TransactionClassifier()

    def select_incomes(
        self,
        incomes: Iterable[Any],
        start: datetime,
        end: datetime,
    ) -> List[Any]:
        """Incomes that contribute to the totals of [start, end]."""
        return [i for i in incomes if income_counts(i, start, end)]

    def select_outcomes(
        self,
        outcomes: Iterable[Any],
        start: datetime,
        end: datetime,
    ) -> List[Tuple[Any, ConceptCategory]]:
        """Outcomes that contribute to the totals of [start, end], with their category."""
        selected = []
        for outcome in outcomes:
            category = self.classifier.classify(outcome)
            if outcome_counts(outcome, start, end, category):
                selected.append((outcome, category))
        return selected

    def aggregate_range(
        self,
        start: datetime,
        end: datetime,
        incomes: Iterable[Any],
        outcomes: Iterable[Any],
    ) -> PeriodTotals:
        """Compute the totals of a date range.

        Args:
            start: Inclusive range start.
            end: Inclusive range end.
            incomes: Candidate income records.
            outcomes: Candidate outcome records.

        Returns:
            PeriodTotals computed with the gross method.
        """
        total_incomes = ZERO
        total_commissions = ZERO
        incomes_count = 0
        for income in self.select_incomes(incomes, start, end):
            total_incomes += to_money(income.amount)
            total_commissions += to_money(getattr(income, "professional_commission", None))
            incomes_count += 1

        total_outcomes = ZERO
        total_refunds = ZERO
        total_commission_reversals = ZERO
        outcomes_count = 0
        for outcome, category in self.select_outcomes(outcomes, start, end):
            amount = abs(to_money(outcome.amount))
            if category is ConceptCategory.PAYMENT_REFUND:
                total_refunds += amount
            elif category is ConceptCategory.COMMISSION_REVERSAL:
                total_commission_reversals += amount
            else:
                total_outcomes += amount
                outcomes_count += 1

        totals = PeriodTotals(
            total_incomes=total_incomes,
            total_outcomes=total_outcomes,
            total_commissions=total_commissions,
            total_refunds=total_refunds,
            total_commission_reversals=total_commission_reversals,
            net_amount=compute_net_amount(
                total_incomes,
                total_outcomes,
                total_commissions,
                total_refunds,
                total_commission_reversals,
            ),
            incomes_count=incomes_count,
            outcomes_count=outcomes_count,
        )

        logger.debug(
            f"Aggregated {start} - {end}: {incomes_count} incomes, "
            f"{outcomes_count} expenses, net {totals.net_amount}"
        )
        return totals

    def aggregate(
        self,
        period: Any,
        incomes: Iterable[Any],
        outcomes: Iterable[Any],
    ) -> PeriodTotals:
        """Compute the totals of an accounting period."""
        return self.aggregate_range(period.start_date, period.end_date, incomes, outcomes)
