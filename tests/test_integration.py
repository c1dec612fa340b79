"""Integration tests for month-close flows across refunds and periods."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from commerce_ledger.accounting import (
    AccountingPeriodService,
    PeriodTotals,
    RefundService,
)
from commerce_ledger.database import PeriodStatus
from commerce_ledger.exceptions import StateConflictError


@pytest.fixture
def periods(db_session, event_sink):
    return AccountingPeriodService(db_session, event_sink=event_sink)


@pytest.fixture
def refunds(db_session, event_sink):
    return RefundService(db_session, event_sink=event_sink)


class TestMonthClose:
    """Sales, refunds and expenses closed into one period."""

    async def test_close_after_mixed_activity(
        self, periods, refunds, income_factory, outcome_factory
    ):
        now = datetime.utcnow()
        paid_at = now - timedelta(days=2)

        fully_refunded = await income_factory(
            amount=Decimal("100"), professional_commission=Decimal("20"),
            commission_paid=True, created_at=paid_at, paid_at=paid_at,
        )
        partially_refunded = await income_factory(
            amount=Decimal("250"), professional_commission=Decimal("50"),
            commission_paid=True, created_at=paid_at, paid_at=paid_at,
        )
        untouched = await income_factory(
            amount=Decimal("400"), professional_commission=Decimal("0"),
            created_at=paid_at, paid_at=paid_at,
        )
        await outcome_factory(amount=Decimal("120"), created_at=paid_at, paid_at=paid_at)

        period = await periods.create_period(
            "commerce-1", "Mes actual", now - timedelta(days=10), now + timedelta(days=1), "admin"
        )

        await refunds.process_refund(fully_refunded.id, 40, "customer-request")
        await refunds.process_refund(fully_refunded.id, 60, "customer-request")
        await refunds.process_refund(partially_refunded.id, 50, "service-issue")

        closed = await periods.close_period(period.id, "admin")
        totals = PeriodTotals.model_validate(closed.totals)

        assert totals.total_incomes == Decimal("750")
        assert totals.total_commissions == Decimal("70")
        assert totals.total_outcomes == Decimal("120")
        assert totals.total_refunds == Decimal("150")
        assert totals.total_commission_reversals == Decimal("30")
        assert totals.net_amount == Decimal("440")
        assert totals.incomes_count == 3
        assert totals.outcomes_count == 1

        # The fully refunded sale contributes nothing
        assert totals.net_amount == Decimal("250") - 50 - 50 + 10 + 400 - 120

        assert fully_refunded.commission_paid is False
        assert partially_refunded.commission_paid is True
        assert all(i.is_closed for i in (fully_refunded, partially_refunded, untouched))

    async def test_reopen_and_reclose_picks_up_late_refund(
        self, periods, refunds, income_factory
    ):
        now = datetime.utcnow()
        income = await income_factory(
            amount=Decimal("100"), professional_commission=Decimal("20"),
            commission_paid=True, created_at=now - timedelta(days=1), paid_at=now - timedelta(days=1),
        )
        period = await periods.create_period(
            "commerce-1", "Mes actual", now - timedelta(days=10), now + timedelta(days=1), "admin"
        )

        first_close = await periods.close_period(period.id, "admin")
        assert Decimal(first_close.totals["net_amount"]) == Decimal("80")

        await periods.reopen_period(period.id, "admin", "Reembolso tardío")
        await refunds.process_refund(income.id, 100, "customer-request")
        second_close = await periods.close_period(period.id, "admin")

        assert Decimal(second_close.totals["net_amount"]) == Decimal("0")
        assert second_close.status == PeriodStatus.CLOSED.value

    async def test_locked_period_rejects_every_transition(self, periods):
        start = datetime(2024, 11, 1)
        period = await periods.create_period(
            "commerce-1", "Noviembre 2024", start, datetime(2024, 11, 30, 23, 59, 59), "admin"
        )
        await periods.close_period(period.id, "admin")
        await periods.lock_period(period.id, "contador", "Cierre anual")

        for transition in (
            periods.close_period(period.id, "admin"),
            periods.reopen_period(period.id, "admin", "x"),
            periods.lock_period(period.id, "admin", "x"),
        ):
            with pytest.raises(StateConflictError):
                await transition

        reloaded = await periods.get_period(period.id)
        assert reloaded.status == PeriodStatus.LOCKED.value
        assert reloaded.locked_by == "contador"
