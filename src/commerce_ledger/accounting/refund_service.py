"""Refund processing with proportional commission reversal."""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Dict, Any, List, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import (
    Income,
    Outcome,
    IncomeRepository,
    OutcomeRepository,
    OutcomeStatus,
)
from ..events import (
    DomainEvent,
    EventSink,
    LoggingEventSink,
    publish_event,
    REFUND_PROCESSED,
    REFUND_APPROVED,
    REFUND_REJECTED,
)
from ..exceptions import (
    NotFoundError,
    RefundAmountError,
    StateConflictError,
    ValidationError,
    format_amount,
)
from .aggregator import ZERO, to_money
from .classifier import TransactionClassifier
from .locks import KeyedLock, income_locks
from .models import (
    ConceptCategory,
    CommissionReversalEntry,
    RefundHistoryEntry,
    RefundMetadata,
    RefundReason,
    RefundResult,
    RefundType,
    REFUND_REASON_LABELS,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

REFUND_OUTCOME_TYPE = "OTHER"
REVERSAL_OUTCOME_TYPE = "PROFESSIONAL_COMMISSION"


def proportional_reversal(
    commission: Decimal,
    refund_amount: Decimal,
    original_amount: Decimal,
) -> Decimal:
    """Commission share of one refunded slice, rounded half-up to cents."""
    if original_amount <= ZERO:
        return ZERO
    return (commission * refund_amount / original_amount).quantize(CENT, rounding=ROUND_HALF_UP)


def _refund_amount(value: Union[Decimal, int, float, str]) -> Decimal:
    """Parse a requested refund amount and round it half-up to cents."""
    try:
        amount = to_money(value)
        if amount.is_finite():
            return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"El monto del reembolso no es válido: {value}") from e
    raise ValidationError(f"El monto del reembolso no es válido: {value}")


def _reason_label(reason: Union[RefundReason, str]) -> str:
    try:
        return REFUND_REASON_LABELS[RefundReason(reason)]
    except ValueError:
        return str(reason)


class RefundService:
    """Service for refunds and the commission reversals they trigger."""

    def __init__(
        self,
        session: AsyncSession,
        event_sink: Optional[EventSink] = None,
        classifier: Optional[TransactionClassifier] = None,
        locks: Optional[KeyedLock] = None,
    ):
        """Initialize the service with a database session.

        Args:
            session: AsyncSession instance for database operations.
            event_sink: Receiver of domain events. Defaults to logging them.
            classifier: Outcome classifier. A default one is created if omitted.
            locks: Per-transaction lock registry. Defaults to the process-wide one.
        """
        self.session = session
        self.income_repo = IncomeRepository(session)
        self.outcome_repo = OutcomeRepository(session)
        self.event_sink = event_sink or LoggingEventSink()
        self.classifier = classifier or TransactionClassifier()
        self.locks = locks or income_locks

    async def process_refund(
        self,
        original_transaction_id: str,
        amount: Union[Decimal, int, float, str],
        reason: Union[RefundReason, str],
        client_id: Optional[str] = None,
        professional_id: Optional[str] = None,
        refund_type: Union[RefundType, str] = RefundType.PAYMENT_REFUND,
        description: Optional[str] = None,
        commerce_id: Optional[str] = None,
    ) -> RefundResult:
        """Refund part or all of an income (or outcome).

        Refunds against an income that had its professional commission paid
        also create a commission reversal for the refunded share, and rebuild
        the income's refund metadata from its contra-transactions.

        Args:
            original_transaction_id: ID of the income or outcome being refunded.
            amount: Refund amount, must be positive.
            reason: RefundReason value.
            client_id: Client receiving the refund. Defaults to the original's.
            professional_id: Beneficiary professional. Defaults to the original's.
            refund_type: Concept type recorded on the refund outcome.
            description: Free text appended to the generated description.
            commerce_id: When given, the original must belong to this commerce.

        Returns:
            RefundResult with the created outcome IDs.

        Raises:
            NotFoundError: If the original transaction does not exist.
            ValidationError: If the amount is not positive or exceeds what is
                still refundable.
        """
        amount = _refund_amount(amount)
        refund_type = self._refund_type(refund_type)

        logger.info(f"Processing refund of {amount} against {original_transaction_id}")

        async with self.locks.hold(original_transaction_id):
            kind, original = await self._find_original_transaction(
                original_transaction_id, commerce_id
            )
            original_amount = abs(to_money(original.amount))

            await self._validate_refund_amount(original.id, amount, original_amount)

            now = datetime.utcnow()
            refund = await self.outcome_repo.create(
                commerce_id=original.commerce_id,
                amount=amount,
                concept_type=refund_type.value,
                type=REFUND_OUTCOME_TYPE,
                description=self._build_refund_description(reason, description),
                client_id=client_id or original.client_id,
                beneficiary=professional_id or getattr(original, "professional_id", None),
                auxiliary_id=original.id,
                status=OutcomeStatus.CONFIRMED.value,
                paid_at=now,
                created_at=now,
            )

            reversal = None
            if kind == "income":
                reversal = await self._process_commission_reversal(
                    original, refund, original_amount, now
                )
                await self._update_refund_metadata(original, refund, original_amount, now)

            await self.session.commit()

        commission_reversed = to_money(reversal.amount) if reversal else ZERO
        result = RefundResult(
            refund_id=refund.id,
            commission_reversal_id=reversal.id if reversal else None,
            original_transaction_id=original.id,
            amount=amount,
            commission_reversed=commission_reversed,
        )

        await publish_event(self.event_sink, DomainEvent(
            event_type=REFUND_PROCESSED,
            attributes={
                "refund_id": refund.id,
                "original_transaction_id": original.id,
                "commerce_id": refund.commerce_id,
                "amount": str(amount),
                "refund_type": refund_type.value,
                "reason": reason.value if isinstance(reason, RefundReason) else str(reason),
                "commission_reversal_id": result.commission_reversal_id,
                "commission_reversed": str(commission_reversed),
            },
        ))

        logger.info(f"Refund processed: {refund.id}")
        return result

    async def list_refunds(
        self,
        commerce_id: str,
        page: int = 1,
        limit: int = 10,
        refund_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """List a commerce's refund outcomes, newest first.

        Args:
            commerce_id: Commerce identifier.
            page: 1-based page number.
            limit: Page size.
            refund_type: Only refunds recorded with this concept type.
            status: Only refunds in this status.

        Returns:
            Dictionary with the page of refunds and the unpaginated total.
        """
        outcomes = await self.outcome_repo.list_by_commerce(commerce_id)
        refunds = [o for o in outcomes if self._is_refund(o)]

        if refund_type:
            wanted = self.classifier.normalize_concept(refund_type)
            refunds = [
                o for o in refunds
                if self.classifier.normalize_concept(o.concept_type) == wanted
            ]
        if status:
            refunds = [o for o in refunds if o.status == status]

        refunds.sort(key=lambda o: o.created_at or datetime.min, reverse=True)

        start = (page - 1) * limit
        return {
            "refunds": [self._refund_response(o) for o in refunds[start:start + limit]],
            "total": len(refunds),
            "page": page,
            "limit": limit,
        }

    async def get_refund(self, refund_id: str, commerce_id: Optional[str] = None) -> Dict[str, Any]:
        """Get one refund by ID.

        Raises:
            NotFoundError: If no such refund exists for the commerce.
        """
        refund = await self._get_refund_outcome(refund_id, commerce_id)
        return self._refund_response(refund)

    async def approve_refund(self, refund_id: str, commerce_id: Optional[str] = None) -> Dict[str, Any]:
        """Mark a refund as CONFIRMED.

        Raises:
            NotFoundError: If no such refund exists for the commerce.
            StateConflictError: If the refund was already rejected.
        """
        async with self.locks.hold(refund_id):
            refund = await self._get_refund_outcome(refund_id, commerce_id, for_update=True)
            if refund.status == OutcomeStatus.CANCELLED.value:
                raise StateConflictError("No se puede aprobar un reembolso rechazado")

            await self.outcome_repo.update(refund.id, {"status": OutcomeStatus.CONFIRMED.value})
            await self.session.commit()

        await publish_event(self.event_sink, DomainEvent(
            event_type=REFUND_APPROVED,
            attributes={
                "refund_id": refund.id,
                "commerce_id": refund.commerce_id,
                "amount": str(refund.amount),
            },
        ))

        logger.info(f"Refund approved: {refund.id}")
        return {"success": True, "message": "Reembolso aprobado exitosamente"}

    async def reject_refund(
        self,
        refund_id: str,
        reason: str,
        commerce_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Mark a refund as CANCELLED and record the rejection reason.

        The refund keeps counting towards refunded totals; rejection only
        changes its status.

        Raises:
            NotFoundError: If no such refund exists for the commerce.
            StateConflictError: If the refund was already rejected.
        """
        async with self.locks.hold(refund_id):
            refund = await self._get_refund_outcome(refund_id, commerce_id, for_update=True)
            if refund.status == OutcomeStatus.CANCELLED.value:
                raise StateConflictError("El reembolso ya fue rechazado")

            await self.outcome_repo.update(refund.id, {
                "status": OutcomeStatus.CANCELLED.value,
                "description": f"{refund.description or ''} - Rechazado: {reason}",
            })
            await self.session.commit()

        await publish_event(self.event_sink, DomainEvent(
            event_type=REFUND_REJECTED,
            attributes={
                "refund_id": refund.id,
                "commerce_id": refund.commerce_id,
                "amount": str(refund.amount),
                "reason": reason,
            },
        ))

        logger.info(f"Refund rejected: {refund.id}")
        return {"success": True, "message": "Reembolso rechazado exitosamente"}

    # ---------------------------------------------------------------- internals

    async def _find_original_transaction(
        self,
        transaction_id: str,
        commerce_id: Optional[str],
    ) -> Tuple[str, Union[Income, Outcome]]:
        income = await self.income_repo.get_for_update(transaction_id)
        if income is not None and (commerce_id is None or income.commerce_id == commerce_id):
            return "income", income

        outcome = await self.outcome_repo.get_for_update(transaction_id)
        if outcome is not None and (commerce_id is None or outcome.commerce_id == commerce_id):
            return "outcome", outcome

        raise NotFoundError("Transacción original no encontrada")

    async def _contra_transactions(self, transaction_id: str) -> List[Tuple[Outcome, ConceptCategory]]:
        outcomes = await self.outcome_repo.list_by_auxiliary_id(transaction_id)
        return [(o, self.classifier.classify(o)) for o in outcomes]

    async def _validate_refund_amount(
        self,
        transaction_id: str,
        amount: Decimal,
        original_amount: Decimal,
    ) -> Decimal:
        if amount <= ZERO:
            raise ValidationError("El monto del reembolso debe ser mayor a 0")

        if amount > original_amount:
            raise RefundAmountError(
                f"El monto del reembolso ({format_amount(amount)}) no puede ser mayor "
                f"al monto original ({format_amount(original_amount)})",
                amount,
                original_amount,
            )

        prior_refunds = sum(
            (
                abs(to_money(o.amount))
                for o, category in await self._contra_transactions(transaction_id)
                if category is ConceptCategory.PAYMENT_REFUND
            ),
            ZERO,
        )
        requested_total = prior_refunds + amount
        if requested_total > original_amount:
            raise RefundAmountError(
                f"El monto total de reembolsos ({format_amount(requested_total)}) "
                f"no puede exceder el monto original ({format_amount(original_amount)})",
                requested_total,
                original_amount,
            )

        return prior_refunds

    async def _process_commission_reversal(
        self,
        income: Income,
        refund: Outcome,
        original_amount: Decimal,
        now: datetime,
    ) -> Optional[Outcome]:
        commission = to_money(income.professional_commission)
        if self.classifier.classify(refund) is not ConceptCategory.PAYMENT_REFUND:
            return None
        if not income.commission_paid or commission <= ZERO:
            return None

        refunded = ZERO
        reversed_so_far = ZERO
        for outcome, category in await self._contra_transactions(income.id):
            if category is ConceptCategory.PAYMENT_REFUND:
                refunded += abs(to_money(outcome.amount))
            elif category is ConceptCategory.COMMISSION_REVERSAL:
                reversed_so_far += abs(to_money(outcome.amount))

        refund_amount = to_money(refund.amount)
        if refunded >= original_amount:
            # Final slice reverses the remainder so the reversals sum to the commission
            reversal_amount = max(commission - reversed_so_far, ZERO)
        else:
            reversal_amount = proportional_reversal(commission, refund_amount, original_amount)

        if reversal_amount <= ZERO:
            return None

        reversal = await self.outcome_repo.create(
            commerce_id=income.commerce_id,
            amount=reversal_amount,
            concept_type=ConceptCategory.COMMISSION_REVERSAL.value,
            type=REVERSAL_OUTCOME_TYPE,
            description=(
                "Reversión automática de comisión - "
                f"Refund de {format_amount(refund_amount)}"
            ),
            client_id=income.client_id,
            beneficiary=refund.beneficiary,
            auxiliary_id=income.id,
            status=OutcomeStatus.CONFIRMED.value,
            paid_at=now,
            created_at=now,
        )

        logger.info(
            f"Commission reversal {reversal.id} of {reversal_amount} "
            f"created for income {income.id}"
        )
        return reversal

    async def _update_refund_metadata(
        self,
        income: Income,
        refund: Outcome,
        original_amount: Decimal,
        now: datetime,
    ) -> RefundMetadata:
        refund_history = []
        reversal_history = []
        for outcome, category in await self._contra_transactions(income.id):
            if category is ConceptCategory.PAYMENT_REFUND:
                refund_history.append(RefundHistoryEntry(
                    refund_id=outcome.id,
                    amount=abs(to_money(outcome.amount)),
                    type=outcome.concept_type,
                    reason=outcome.description,
                    date=outcome.created_at,
                ))
            elif category is ConceptCategory.COMMISSION_REVERSAL:
                reversal_history.append(CommissionReversalEntry(
                    reversal_id=outcome.id,
                    amount=abs(to_money(outcome.amount)),
                    type=outcome.concept_type,
                    reason=outcome.description,
                    date=outcome.created_at,
                ))

        total_refunded = sum((e.amount for e in refund_history), ZERO)
        metadata = RefundMetadata(
            is_refunded=total_refunded >= original_amount,
            total_refunded=total_refunded,
            refund_count=len(refund_history),
            original_amount=original_amount,
            total_commission_reversed=sum((e.amount for e in reversal_history), ZERO),
            commission_reversal_count=len(reversal_history),
            refund_history=refund_history,
            commission_reversal_history=reversal_history,
            last_refund_id=refund.id,
            last_refund_at=now,
        )

        patch: Dict[str, Any] = {"refund_metadata": metadata.model_dump(mode="json")}
        if metadata.is_refunded:
            patch["commission_paid"] = False
            patch["commission_payment_id"] = None
            logger.info(f"Income {income.id} fully refunded, commission marked unpaid")

        await self.income_repo.update(income.id, patch)
        return metadata

    async def _get_refund_outcome(
        self,
        refund_id: str,
        commerce_id: Optional[str],
        for_update: bool = False,
    ) -> Outcome:
        if for_update:
            outcome = await self.outcome_repo.get_for_update(refund_id)
        else:
            outcome = await self.outcome_repo.get_by_id(refund_id)

        if (
            outcome is None
            or (commerce_id is not None and outcome.commerce_id != commerce_id)
            or not self._is_refund(outcome)
        ):
            raise NotFoundError("Reembolso no encontrado")
        return outcome

    def _refund_type(self, refund_type: Union[RefundType, str]) -> RefundType:
        raw = refund_type.value if isinstance(refund_type, RefundType) else refund_type
        try:
            return RefundType(self.classifier.normalize_concept(raw))
        except ValueError as e:
            raise ValidationError(f"Tipo de reembolso no válido: {raw}") from e

    def _is_refund(self, outcome: Outcome) -> bool:
        if self.classifier.classify(outcome) is ConceptCategory.PAYMENT_REFUND:
            return True
        return "reembolso" in (outcome.description or "").lower()

    @staticmethod
    def _build_refund_description(
        reason: Union[RefundReason, str],
        description: Optional[str],
    ) -> str:
        text = f"Reembolso - {_reason_label(reason)}"
        if description:
            text += f" - {description}"
        return text

    @staticmethod
    def _refund_response(outcome: Outcome) -> Dict[str, Any]:
        created_at = outcome.created_at.isoformat() if outcome.created_at else None
        return {
            "id": outcome.id,
            "original_transaction_id": outcome.auxiliary_id or "",
            "amount": str(outcome.amount),
            "type": outcome.concept_type,
            "reason": outcome.description or "",
            "description": outcome.description,
            "client_id": outcome.client_id,
            "professional_id": outcome.beneficiary,
            "status": outcome.status,
            "processed_at": created_at,
            "created_at": created_at,
            "commerce_id": outcome.commerce_id,
        }
