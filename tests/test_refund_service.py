"""Tests for refund processing and commission reversal."""

import asyncio
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from commerce_ledger.accounting import (
    AccountingPeriodService,
    RefundReason,
    RefundService,
    RefundType,
)
from commerce_ledger.database import OutcomeRepository, OutcomeStatus
from commerce_ledger.events import REFUND_PROCESSED, REFUND_APPROVED, REFUND_REJECTED
from commerce_ledger.exceptions import (
    NotFoundError,
    RefundAmountError,
    StateConflictError,
    ValidationError,
)


@pytest.fixture
def service(db_session, event_sink):
    return RefundService(db_session, event_sink=event_sink)


@pytest.fixture
async def paid_income(income_factory):
    """Income of 100 with a paid commission of 20, dated just now."""
    paid_at = datetime.utcnow() - timedelta(hours=1)
    return await income_factory(
        amount=Decimal("100"),
        professional_commission=Decimal("20"),
        commission_paid=True,
        commission_payment_id="commission-payment-1",
        created_at=paid_at,
        paid_at=paid_at,
    )


@pytest.fixture
async def current_period(db_session):
    """OPEN period covering the last month, so refunds dated now fall inside it."""
    now = datetime.utcnow()
    return await AccountingPeriodService(db_session).create_period(
        "commerce-1", "Mes actual", now - timedelta(days=30), now + timedelta(days=1), "admin"
    )


async def contra_transactions(db_session, income_id):
    return await OutcomeRepository(db_session).list_by_auxiliary_id(income_id)


async def refund_and_reversal(db_session, income_id):
    outcomes = await contra_transactions(db_session, income_id)
    refunds = [o for o in outcomes if o.concept_type != "commission-reversal"]
    reversals = [o for o in outcomes if o.concept_type == "commission-reversal"]
    assert len(refunds) == 1 and len(reversals) == 1
    return refunds[0], reversals[0]


class TestProcessRefund:
    """Tests for RefundService.process_refund."""

    async def test_full_refund_reverses_whole_commission(
        self, service, db_session, paid_income, current_period
    ):
        result = await service.process_refund(
            paid_income.id, Decimal("100"), RefundReason.CUSTOMER_REQUEST
        )

        assert result.success is True
        assert result.commission_reversal_id is not None
        assert result.commission_reversed == Decimal("20")

        refund, reversal = await refund_and_reversal(db_session, paid_income.id)
        assert refund.id == result.refund_id
        assert refund.amount == Decimal("100")
        assert refund.concept_type == "payment-refund"
        assert refund.type == "OTHER"
        assert refund.status == OutcomeStatus.CONFIRMED.value
        assert refund.beneficiary == "prof-1"
        assert refund.client_id == "client-1"
        assert refund.description == "Reembolso - Solicitud del cliente"

        assert reversal.id == result.commission_reversal_id
        assert reversal.amount == Decimal("20")
        assert reversal.concept_type == "commission-reversal"
        assert reversal.description == "Reversión automática de comisión - Refund de 100"

        assert paid_income.commission_paid is False
        assert paid_income.commission_payment_id is None

        summary = await AccountingPeriodService(db_session).get_period_summary(current_period.id)
        assert summary.total_incomes == Decimal("100")
        assert summary.total_refunds == Decimal("100")
        assert summary.total_commission_reversals == Decimal("20")
        assert summary.net_amount == Decimal("0")

    async def test_sequential_partial_refunds(
        self, service, db_session, paid_income, current_period
    ):
        first = await service.process_refund(paid_income.id, 30, "customer-request")
        assert first.commission_reversed == Decimal("6")
        assert paid_income.commission_paid is True
        assert paid_income.refund_metadata["is_refunded"] is False

        second = await service.process_refund(paid_income.id, 40, "customer-request")
        assert second.commission_reversed == Decimal("8")

        third = await service.process_refund(paid_income.id, 30, "customer-request")
        assert third.commission_reversed == Decimal("6")

        metadata = paid_income.refund_metadata
        assert metadata["is_refunded"] is True
        assert Decimal(metadata["total_refunded"]) == Decimal("100")
        assert metadata["refund_count"] == 3
        assert Decimal(metadata["total_commission_reversed"]) == Decimal("20")
        assert metadata["last_refund_id"] == third.refund_id
        assert paid_income.commission_paid is False

        summary = await AccountingPeriodService(db_session).get_period_summary(current_period.id)
        assert summary.total_refunds == Decimal("100")
        assert summary.total_commission_reversals == Decimal("20")
        assert summary.net_amount == Decimal("0")

    async def test_reversals_sum_to_commission_despite_rounding(self, service, income_factory):
        income = await income_factory(
            amount=Decimal("100"), professional_commission=Decimal("10"), commission_paid=True
        )

        reversed_amounts = []
        for amount in ("33.33", "33.33", "33.34"):
            result = await service.process_refund(income.id, Decimal(amount), "other")
            reversed_amounts.append(result.commission_reversed)

        assert reversed_amounts == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]
        assert sum(reversed_amounts) == Decimal("10")

    async def test_refund_larger_than_original(self, service, db_session, paid_income):
        with pytest.raises(ValidationError) as exc_info:
            await service.process_refund(paid_income.id, 150, "customer-request")

        assert exc_info.value.message == (
            "El monto del reembolso (150) no puede ser mayor al monto original (100)"
        )
        assert await contra_transactions(db_session, paid_income.id) == []
        assert paid_income.refund_metadata is None

    async def test_cumulative_refunds_cannot_exceed_original(self, service, db_session, paid_income):
        await service.process_refund(paid_income.id, 60, "customer-request")

        with pytest.raises(RefundAmountError) as exc_info:
            await service.process_refund(paid_income.id, 50, "customer-request")

        assert exc_info.value.message == (
            "El monto total de reembolsos (110) no puede exceder el monto original (100)"
        )
        assert exc_info.value.requested_total == Decimal("110")

        refunds = [
            o for o in await contra_transactions(db_session, paid_income.id)
            if o.concept_type == "payment-refund"
        ]
        assert len(refunds) == 1
        assert Decimal(paid_income.refund_metadata["total_refunded"]) == Decimal("60")

    @pytest.mark.parametrize("amount", [0, -10])
    async def test_amount_must_be_positive(self, service, paid_income, amount):
        with pytest.raises(ValidationError) as exc_info:
            await service.process_refund(paid_income.id, amount, "customer-request")
        assert exc_info.value.message == "El monto del reembolso debe ser mayor a 0"

    async def test_amount_rounded_to_cents(self, service, db_session, paid_income):
        first = await service.process_refund(paid_income.id, Decimal("33.335"), "other")
        second = await service.process_refund(paid_income.id, "33.335", "other")

        assert first.amount == Decimal("33.34")
        assert second.amount == Decimal("33.34")
        stored = await OutcomeRepository(db_session).get_by_id(first.refund_id)
        assert stored.amount == first.amount

        with pytest.raises(RefundAmountError) as exc_info:
            await service.process_refund(paid_income.id, Decimal("33.335"), "other")
        assert exc_info.value.message == (
            "El monto total de reembolsos (100.02) no puede exceder el monto original (100)"
        )

        await service.process_refund(paid_income.id, Decimal("33.32"), "other")

        metadata = paid_income.refund_metadata
        assert metadata["is_refunded"] is True
        assert Decimal(metadata["total_refunded"]) == Decimal("100")
        assert Decimal(metadata["total_commission_reversed"]) == Decimal("20")

    @pytest.mark.parametrize("amount", ["abc", "NaN", "Infinity", [10]])
    async def test_unparseable_amount(self, service, db_session, paid_income, amount):
        with pytest.raises(ValidationError) as exc_info:
            await service.process_refund(paid_income.id, amount, "other")

        assert exc_info.value.message.startswith("El monto del reembolso no es válido")
        assert await contra_transactions(db_session, paid_income.id) == []

    async def test_legacy_refund_type_spelling(self, service, db_session, paid_income):
        result = await service.process_refund(
            paid_income.id, 10, "other", refund_type="PAYMENT_REFUND"
        )

        refund, reversal = await refund_and_reversal(db_session, paid_income.id)
        assert refund.concept_type == RefundType.PAYMENT_REFUND.value
        assert reversal.id == result.commission_reversal_id

    async def test_unknown_refund_type(self, service, db_session, paid_income):
        with pytest.raises(ValidationError) as exc_info:
            await service.process_refund(paid_income.id, 10, "other", refund_type="gift-card")

        assert exc_info.value.message == "Tipo de reembolso no válido: gift-card"
        assert await contra_transactions(db_session, paid_income.id) == []

    async def test_unknown_transaction(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.process_refund("missing", 10, "customer-request")
        assert exc_info.value.message == "Transacción original no encontrada"

    async def test_other_commerce_transaction_not_found(self, service, paid_income):
        with pytest.raises(NotFoundError):
            await service.process_refund(
                paid_income.id, 10, "customer-request", commerce_id="commerce-2"
            )

    async def test_unpaid_commission_not_reversed(self, service, db_session, income_factory):
        income = await income_factory(commission_paid=False)

        result = await service.process_refund(income.id, 100, "service-issue")

        assert result.commission_reversal_id is None
        assert result.commission_reversed == Decimal("0")
        assert len(await contra_transactions(db_session, income.id)) == 1
        assert income.refund_metadata["is_refunded"] is True

    async def test_zero_commission_not_reversed(self, service, income_factory):
        income = await income_factory(professional_commission=Decimal("0"), commission_paid=True)

        result = await service.process_refund(income.id, 50, "service-issue")

        assert result.commission_reversal_id is None

    async def test_refund_against_outcome(self, service, db_session, outcome_factory):
        expense = await outcome_factory(amount=Decimal("300"))

        result = await service.process_refund(expense.id, 120, "duplicate-payment")

        assert result.commission_reversal_id is None
        [refund] = await contra_transactions(db_session, expense.id)
        assert refund.amount == Decimal("120")

        with pytest.raises(ValidationError):
            await service.process_refund(expense.id, 200, "duplicate-payment")

    async def test_refund_type_and_description(self, service, db_session, paid_income):
        result = await service.process_refund(
            paid_income.id,
            25,
            RefundReason.SERVICE_ISSUE,
            refund_type=RefundType.SERVICE_REFUND,
            description="Cliente insatisfecho",
            professional_id="prof-9",
            client_id="client-9",
        )

        refund, reversal = await refund_and_reversal(db_session, paid_income.id)
        assert refund.id == result.refund_id
        assert refund.concept_type == "service-refund"
        assert refund.description == "Reembolso - Problema con el servicio - Cliente insatisfecho"
        assert refund.beneficiary == "prof-9"
        assert refund.client_id == "client-9"
        assert reversal.beneficiary == "prof-9"
        assert result.commission_reversed == Decimal("5")

    async def test_metadata_rebuilt_from_contra_transactions(self, service, paid_income):
        first = await service.process_refund(paid_income.id, 10, "customer-request")
        second = await service.process_refund(paid_income.id, 15, "technical-error")

        metadata = paid_income.refund_metadata
        assert [e["refund_id"] for e in metadata["refund_history"]] == [
            first.refund_id, second.refund_id
        ]
        assert [e["reversal_id"] for e in metadata["commission_reversal_history"]] == [
            first.commission_reversal_id, second.commission_reversal_id
        ]
        assert metadata["commission_reversal_count"] == 2
        assert Decimal(metadata["original_amount"]) == Decimal("100")
        assert metadata["refund_history"][1]["reason"] == "Reembolso - Error técnico"

    async def test_publishes_refund_processed(self, service, event_sink, paid_income):
        result = await service.process_refund(paid_income.id, 10, "customer-request")

        assert event_sink.types() == [REFUND_PROCESSED]
        attributes = event_sink.events[0].attributes
        assert attributes["refund_id"] == result.refund_id
        assert attributes["original_transaction_id"] == paid_income.id
        assert attributes["amount"] == "10"
        assert attributes["reason"] == "customer-request"

    async def test_publish_failure_keeps_refund(self, db_session, failing_sink, paid_income):
        service = RefundService(db_session, event_sink=failing_sink)

        result = await service.process_refund(paid_income.id, 100, "customer-request")

        assert result.success is True
        assert failing_sink.attempts == 1
        assert len(await contra_transactions(db_session, paid_income.id)) == 2
        assert paid_income.commission_paid is False

    async def test_concurrent_refunds_cannot_over_refund(self, session_factory, paid_income):
        async with session_factory() as first, session_factory() as second:
            results = await asyncio.gather(
                RefundService(first).process_refund(paid_income.id, 60, "customer-request"),
                RefundService(second).process_refund(paid_income.id, 60, "customer-request"),
                return_exceptions=True,
            )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], RefundAmountError)

        async with session_factory() as check_session:
            outcomes = await contra_transactions(check_session, paid_income.id)
            refunded = sum(o.amount for o in outcomes if o.concept_type == "payment-refund")
            assert refunded == Decimal("60")


class TestRefundManagement:
    """Tests for listing, approving and rejecting refunds."""

    async def test_list_refunds(self, service, paid_income, outcome_factory):
        await outcome_factory()
        await service.process_refund(paid_income.id, 10, "customer-request")
        await service.process_refund(
            paid_income.id, 10, "customer-request", refund_type=RefundType.CANCELLATION_REFUND
        )
        await service.process_refund(paid_income.id, 10, "customer-request")

        listing = await service.list_refunds("commerce-1", page=1, limit=2)
        assert listing["total"] == 3
        assert len(listing["refunds"]) == 2
        assert listing["page"] == 1

        second_page = await service.list_refunds("commerce-1", page=2, limit=2)
        assert len(second_page["refunds"]) == 1

        cancellations = await service.list_refunds("commerce-1", refund_type="cancellation-refund")
        assert cancellations["total"] == 1
        assert cancellations["refunds"][0]["original_transaction_id"] == paid_income.id

        assert (await service.list_refunds("commerce-2"))["total"] == 0

    async def test_get_refund(self, service, paid_income):
        result = await service.process_refund(paid_income.id, 10, "customer-request")

        refund = await service.get_refund(result.refund_id, "commerce-1")

        assert refund["id"] == result.refund_id
        assert refund["professional_id"] == "prof-1"
        assert Decimal(refund["amount"]) == Decimal("10")

    async def test_get_refund_not_found(self, service, paid_income):
        result = await service.process_refund(paid_income.id, 10, "customer-request")

        with pytest.raises(NotFoundError) as exc_info:
            await service.get_refund(result.refund_id, "commerce-2")
        assert exc_info.value.message == "Reembolso no encontrado"

        with pytest.raises(NotFoundError):
            await service.get_refund(result.commission_reversal_id)

    async def test_approve_refund(self, service, event_sink, paid_income):
        result = await service.process_refund(paid_income.id, 10, "customer-request")

        response = await service.approve_refund(result.refund_id, "commerce-1")

        assert response == {"success": True, "message": "Reembolso aprobado exitosamente"}
        refund = await service.get_refund(result.refund_id)
        assert refund["status"] == OutcomeStatus.CONFIRMED.value
        assert event_sink.types()[-1] == REFUND_APPROVED

    async def test_reject_refund(self, service, event_sink, paid_income):
        result = await service.process_refund(paid_income.id, 10, "customer-request")

        response = await service.reject_refund(result.refund_id, "Duplicado", "commerce-1")

        assert response["success"] is True
        refund = await service.get_refund(result.refund_id)
        assert refund["status"] == OutcomeStatus.CANCELLED.value
        assert refund["description"] == "Reembolso - Solicitud del cliente - Rechazado: Duplicado"
        assert event_sink.types()[-1] == REFUND_REJECTED

        with pytest.raises(StateConflictError):
            await service.reject_refund(result.refund_id, "Otra vez")
        with pytest.raises(StateConflictError):
            await service.approve_refund(result.refund_id)

    async def test_rejected_refund_still_counts(self, service, paid_income):
        result = await service.process_refund(paid_income.id, 60, "customer-request")
        await service.reject_refund(result.refund_id, "Error de digitación")

        with pytest.raises(RefundAmountError):
            await service.process_refund(paid_income.id, 50, "customer-request")
