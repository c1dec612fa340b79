"""Accounting period lifecycle: OPEN -> CLOSED -> LOCKED, and CLOSED -> OPEN."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import (
    AccountingPeriod,
    IncomeRepository,
    OutcomeRepository,
    PeriodRepository,
    PeriodStatus,
    IncomeStatus,
    OutcomeStatus,
)
from ..events import (
    DomainEvent,
    EventSink,
    LoggingEventSink,
    publish_event,
    PERIOD_CREATED,
    PERIOD_CLOSED,
    PERIOD_REOPENED,
    PERIOD_LOCKED,
)
from ..exceptions import (
    NotFoundError,
    PendingTransactionsError,
    StateConflictError,
    ValidationError,
)
from .aggregator import PeriodAggregator, income_in_period, outcome_in_period
from .locks import KeyedLock, period_locks
from .models import PeriodTotals, ReconciliationData

logger = logging.getLogger(__name__)

FINALIZED_STATUSES = (PeriodStatus.CLOSED.value, PeriodStatus.LOCKED.value)


def _ranges_overlap(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime,
) -> bool:
    starts_inside = other_start <= start <= other_end
    ends_inside = other_start <= end <= other_end
    encloses = start <= other_start and end >= other_end
    return starts_inside or ends_inside or encloses


def _append_note(notes: Optional[str], note: str) -> str:
    return f"{notes}\n{note}" if notes else note


class AccountingPeriodService:
    """Service for the accounting period state machine."""

    def __init__(
        self,
        session: AsyncSession,
        event_sink: Optional[EventSink] = None,
        aggregator: Optional[PeriodAggregator] = None,
        locks: Optional[KeyedLock] = None,
    ):
        """Initialize the service with a database session.

        Args:
            session: AsyncSession instance for database operations.
            event_sink: Receiver of domain events. Defaults to logging them.
            aggregator: Totals calculator. A default one is created if omitted.
            locks: Per-period lock registry. Defaults to the process-wide one.
        """
        self.session = session
        self.period_repo = PeriodRepository(session)
        self.income_repo = IncomeRepository(session)
        self.outcome_repo = OutcomeRepository(session)
        self.event_sink = event_sink or LoggingEventSink()
        self.aggregator = aggregator or PeriodAggregator()
        self.locks = locks or period_locks

    # ------------------------------------------------------------------ queries

    async def get_period(self, period_id: str) -> AccountingPeriod:
        """Get a period by ID.

        Raises:
            NotFoundError: If the period does not exist.
        """
        period = await self.period_repo.get_by_id(period_id)
        if period is None:
            raise NotFoundError("Período contable no encontrado")
        return period

    async def get_current_open_period(self, commerce_id: str) -> Optional[AccountingPeriod]:
        """Get the OPEN period of a commerce, if any."""
        return await self.period_repo.get_open_by_commerce(commerce_id)

    async def list_periods(
        self,
        commerce_id: str,
        search_text: Optional[str] = None,
        status: Optional[str] = None,
        year: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[AccountingPeriod]:
        """List a commerce's periods, newest first, with optional filters.

        Args:
            commerce_id: Commerce identifier.
            search_text: Case-insensitive match against name and notes.
            status: Only periods in this status.
            year: Only periods starting or ending in this year.
            start_date: With end_date, only periods overlapping this range.
            end_date: With start_date, only periods overlapping this range.
            limit: Page size.
            offset: Number of periods to skip, 0 when omitted.

        Returns:
            List of AccountingPeriod instances.
        """
        statuses = [status] if status else None
        periods = await self.period_repo.list_by_commerce(commerce_id, statuses)

        if search_text:
            needle = search_text.lower()
            periods = [
                p for p in periods
                if needle in (p.name or "").lower() or needle in (p.notes or "").lower()
            ]

        if year is not None:
            year = int(year)
            periods = [
                p for p in periods
                if p.start_date.year == year or p.end_date.year == year
            ]

        if start_date and end_date:
            periods = [
                p for p in periods
                if _ranges_overlap(p.start_date, p.end_date, start_date, end_date)
            ]

        if limit is not None or offset is not None:
            start = offset or 0
            periods = periods[start:start + limit] if limit is not None else periods[start:]

        return periods

    async def get_period_summary(self, period_id: str) -> PeriodTotals:
        """Get a period's totals.

        OPEN periods are recomputed live; CLOSED and LOCKED periods return the
        snapshot frozen at close time.
        """
        period = await self.get_period(period_id)

        if period.status == PeriodStatus.OPEN.value:
            return await self._calculate_totals(period)
        return PeriodTotals.model_validate(period.totals or {})

    async def get_period_transactions(self, period_id: str) -> Dict[str, List[Any]]:
        """Get the incomes and outcomes dated inside a period, newest first."""
        period = await self.get_period(period_id)
        incomes, outcomes = await self._load_transactions(period.commerce_id)

        period_incomes = [
            i for i in incomes
            if income_in_period(i, period.start_date, period.end_date)
        ]
        period_outcomes = [
            o for o in outcomes
            if outcome_in_period(
                o,
                period.start_date,
                period.end_date,
                self.aggregator.classifier.classify(o),
            )
        ]

        def newest_first(record):
            return record.paid_at or record.created_at or datetime.min

        return {
            "incomes": sorted(period_incomes, key=newest_first, reverse=True),
            "outcomes": sorted(period_outcomes, key=newest_first, reverse=True),
        }

    async def is_transaction_in_closed_period(
        self,
        commerce_id: str,
        transaction_date: datetime,
    ) -> bool:
        """True if the date falls inside a CLOSED or LOCKED period."""
        periods = await self.period_repo.list_by_commerce(commerce_id, FINALIZED_STATUSES)
        return any(p.start_date <= transaction_date <= p.end_date for p in periods)

    async def get_period_for_transaction(
        self,
        commerce_id: str,
        transaction_date: datetime,
    ) -> Optional[AccountingPeriod]:
        """Get the period containing a date, else the current OPEN period."""
        periods = await self.period_repo.list_by_commerce(commerce_id)
        for period in periods:
            if period.start_date <= transaction_date <= period.end_date:
                return period
        return await self.get_current_open_period(commerce_id)

    # ---------------------------------------------------------------- lifecycle

    async def create_period(
        self,
        commerce_id: str,
        name: str,
        start_date: datetime,
        end_date: datetime,
        created_by: str,
        notes: Optional[str] = None,
    ) -> AccountingPeriod:
        """Create a new OPEN period.

        Raises:
            ValidationError: If the range is empty or overlaps another period.
            StateConflictError: If the commerce already has an OPEN period.
        """
        logger.info(f"Creating accounting period {name} for commerce {commerce_id}")

        async with self.locks.hold(f"commerce:{commerce_id}"):
            await self._validate_period_dates(commerce_id, start_date, end_date)

            current_open = await self.get_current_open_period(commerce_id)
            if current_open:
                raise StateConflictError(
                    f"Ya existe un período abierto: {current_open.name}. "
                    "Cierra el período actual antes de crear uno nuevo."
                )

            period = await self.period_repo.create(
                commerce_id=commerce_id,
                name=name,
                start_date=start_date,
                end_date=end_date,
                status=PeriodStatus.OPEN.value,
                created_by=created_by,
                created_at=datetime.utcnow(),
                notes=notes,
                totals=PeriodTotals().to_snapshot(),
            )
            await self.session.commit()

        await publish_event(self.event_sink, DomainEvent(
            event_type=PERIOD_CREATED,
            attributes={
                "period_id": period.id,
                "name": period.name,
                "start_date": period.start_date.isoformat(),
                "end_date": period.end_date.isoformat(),
                "commerce_id": period.commerce_id,
                "created_by": period.created_by,
            },
        ))

        logger.info(f"Accounting period created: {period.id}")
        return period

    async def close_period(
        self,
        period_id: str,
        closed_by: str,
        notes: Optional[str] = None,
        reconciliation_data: Optional[Union[ReconciliationData, Dict[str, Any]]] = None,
    ) -> AccountingPeriod:
        """Close an OPEN period, freezing its totals and transactions.

        Raises:
            NotFoundError: If the period does not exist.
            StateConflictError: If the period is not OPEN, has pending
                transactions, or was closed concurrently.
        """
        logger.info(f"Closing accounting period: {period_id}")

        async with self.locks.hold(period_id):
            period = await self._get_period_for_update(period_id)

            if period.status != PeriodStatus.OPEN.value:
                raise StateConflictError("Solo se pueden cerrar períodos con estado OPEN")

            incomes, outcomes = await self._load_transactions(period.commerce_id)
            self._validate_no_pending_transactions(period, incomes, outcomes)

            totals = self.aggregator.aggregate(period, incomes, outcomes)

            now = datetime.utcnow()
            marked_incomes = await self.income_repo.mark_closed(
                [i for i in incomes if income_in_period(i, period.start_date, period.end_date)],
                period.id,
                now,
            )
            marked_outcomes = await self.outcome_repo.mark_closed(
                [
                    o for o in outcomes
                    if outcome_in_period(
                        o,
                        period.start_date,
                        period.end_date,
                        self.aggregator.classifier.classify(o),
                    )
                ],
                period.id,
                now,
            )

            patch: Dict[str, Any] = {
                "closed_by": closed_by,
                "closed_at": now,
                "totals": totals.to_snapshot(),
                "reconciliation_data": self._reconciliation_dict(reconciliation_data),
            }
            if notes:
                patch["notes"] = notes

            await self._transition(period, PeriodStatus.OPEN, PeriodStatus.CLOSED, patch)
            await self.session.commit()

        logger.info(
            f"Accounting period closed: {period.id} "
            f"({marked_incomes} incomes, {marked_outcomes} outcomes frozen)"
        )

        await publish_event(self.event_sink, DomainEvent(
            event_type=PERIOD_CLOSED,
            attributes={
                "period_id": period.id,
                "name": period.name,
                "start_date": period.start_date.isoformat(),
                "end_date": period.end_date.isoformat(),
                "totals": period.totals,
                "closed_by": period.closed_by,
                "commerce_id": period.commerce_id,
            },
        ))
        return period

    async def reopen_period(
        self,
        period_id: str,
        reopened_by: str,
        reason: str,
    ) -> AccountingPeriod:
        """Reopen a CLOSED period.

        Raises:
            NotFoundError: If the period does not exist.
            StateConflictError: If the period is LOCKED or OPEN, a later period
                is already closed, or another period is OPEN.
        """
        logger.info(f"Reopening accounting period: {period_id}")

        commerce_id = (await self.get_period(period_id)).commerce_id

        # Commerce before period, same order as create_period
        async with self.locks.hold(f"commerce:{commerce_id}"), self.locks.hold(period_id):
            period = await self._get_period_for_update(period_id)

            if period.status == PeriodStatus.LOCKED.value:
                raise StateConflictError("No se puede reabrir un período bloqueado (LOCKED)")
            if period.status == PeriodStatus.OPEN.value:
                raise StateConflictError("El período ya está abierto")

            await self._validate_no_closed_periods_after(period)

            current_open = await self.get_current_open_period(period.commerce_id)
            if current_open and current_open.id != period.id:
                raise StateConflictError(
                    f"Ya existe un período abierto: {current_open.name}. "
                    "Cierra el período actual antes de reabrir otro."
                )

            await self.income_repo.unmark_closed(period.id)
            await self.outcome_repo.unmark_closed(period.id)

            now = datetime.utcnow()
            await self._transition(period, PeriodStatus.CLOSED, PeriodStatus.OPEN, {
                "reopened_by": reopened_by,
                "reopened_at": now,
                "notes": _append_note(
                    period.notes,
                    f"[Reabierto el {now.isoformat()}] Razón: {reason}",
                ),
            })
            await self.session.commit()

        await publish_event(self.event_sink, DomainEvent(
            event_type=PERIOD_REOPENED,
            attributes={
                "period_id": period.id,
                "name": period.name,
                "reopened_by": reopened_by,
                "reason": reason,
                "commerce_id": period.commerce_id,
            },
        ))

        logger.info(f"Accounting period reopened: {period.id}")
        return period

    async def lock_period(
        self,
        period_id: str,
        locked_by: str,
        reason: str,
    ) -> AccountingPeriod:
        """Lock a CLOSED period permanently.

        Raises:
            NotFoundError: If the period does not exist.
            StateConflictError: If the period is not CLOSED.
        """
        logger.info(f"Locking accounting period: {period_id}")

        async with self.locks.hold(period_id):
            period = await self._get_period_for_update(period_id)

            if period.status != PeriodStatus.CLOSED.value:
                raise StateConflictError("Solo se pueden bloquear períodos cerrados")

            now = datetime.utcnow()
            await self._transition(period, PeriodStatus.CLOSED, PeriodStatus.LOCKED, {
                "locked_by": locked_by,
                "locked_at": now,
                "notes": _append_note(
                    period.notes,
                    f"[Bloqueado el {now.isoformat()}] Razón: {reason}",
                ),
            })
            await self.session.commit()

        await publish_event(self.event_sink, DomainEvent(
            event_type=PERIOD_LOCKED,
            attributes={
                "period_id": period.id,
                "name": period.name,
                "locked_by": locked_by,
                "reason": reason,
                "commerce_id": period.commerce_id,
            },
        ))

        logger.info(f"Accounting period locked: {period.id}")
        return period

    # ---------------------------------------------------------------- internals

    async def _get_period_for_update(self, period_id: str) -> AccountingPeriod:
        period = await self.period_repo.get_for_update(period_id)
        if period is None:
            raise NotFoundError("Período contable no encontrado")
        return period

    async def _load_transactions(self, commerce_id: str):
        incomes = await self.income_repo.list_by_commerce(commerce_id)
        outcomes = await self.outcome_repo.list_by_commerce(commerce_id)
        logger.debug(
            f"Loaded {len(incomes)} incomes and {len(outcomes)} outcomes "
            f"for commerce {commerce_id}"
        )
        return incomes, outcomes

    async def _calculate_totals(self, period: AccountingPeriod) -> PeriodTotals:
        incomes, outcomes = await self._load_transactions(period.commerce_id)
        return self.aggregator.aggregate(period, incomes, outcomes)

    async def _transition(
        self,
        period: AccountingPeriod,
        expected: PeriodStatus,
        new: PeriodStatus,
        patch: Dict[str, Any],
    ) -> None:
        applied = await self.period_repo.transition_status(
            period, expected.value, new.value, patch
        )
        if not applied:
            await self.session.rollback()
            raise StateConflictError(
                f"El período {period.id} fue modificado por otra operación"
            )

    async def _validate_period_dates(
        self,
        commerce_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> None:
        if start_date >= end_date:
            raise ValidationError("La fecha de inicio debe ser menor que la fecha de fin")

        for period in await self.period_repo.list_by_commerce(commerce_id):
            if _ranges_overlap(start_date, end_date, period.start_date, period.end_date):
                raise ValidationError(f"El período se solapa con: {period.name}")

    async def _validate_no_closed_periods_after(self, period: AccountingPeriod) -> None:
        finalized = await self.period_repo.list_by_commerce(
            period.commerce_id, FINALIZED_STATUSES
        )
        if any(p.id != period.id and p.start_date > period.end_date for p in finalized):
            raise StateConflictError(
                "No se puede reabrir un período si hay períodos posteriores cerrados"
            )

    @staticmethod
    def _validate_no_pending_transactions(
        period: AccountingPeriod,
        incomes: List[Any],
        outcomes: List[Any],
    ) -> None:
        def pending_in_range(records, pending_status):
            return sum(
                1 for r in records
                if r.status == pending_status
                and r.created_at is not None
                and period.start_date <= r.created_at <= period.end_date
            )

        pending_incomes = pending_in_range(incomes, IncomeStatus.PENDING.value)
        pending_outcomes = pending_in_range(outcomes, OutcomeStatus.PENDING.value)

        if pending_incomes or pending_outcomes:
            logger.warning(
                f"Period {period.id} has {pending_incomes} pending incomes and "
                f"{pending_outcomes} pending outcomes"
            )
            raise PendingTransactionsError(pending_incomes, pending_outcomes)

    @staticmethod
    def _reconciliation_dict(
        data: Optional[Union[ReconciliationData, Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        if data is None:
            return None
        if isinstance(data, dict):
            data = ReconciliationData.model_validate(data)
        return data.model_dump(mode="json")
