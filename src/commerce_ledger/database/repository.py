"""Repository layer for ledger persistence operations."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AccountingPeriod,
    Income,
    Outcome,
    PeriodStatus,
)

logger = logging.getLogger(__name__)


class _EntityRepository:
    """Shared find/create/update-by-id operations for one model."""

    model: Any = None

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(self, **fields: Any):
        """Create and flush a new record.

        Args:
            **fields: Column or property values for the new record.

        Returns:
            Created model instance.
        """
        entity = self.model()
        for name, value in fields.items():
            setattr(entity, name, value)

        self.session.add(entity)
        await self.session.flush()

        logger.debug(f"Created {self.model.__name__} {entity.id}")
        return entity

    async def get_by_id(self, entity_id: str):
        """Get a record by its ID.

        Returns:
            Model instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(self.model).where(self.model.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, entity_id: str):
        """Get a record by ID with a row lock for mutation."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update(self, entity_id: str, patch: Dict[str, Any]):
        """Apply a partial update to a record.

        Args:
            entity_id: ID of the record to update.
            patch: Attribute values to set.

        Returns:
            Updated model instance, or None if the record does not exist.
        """
        entity = await self.get_by_id(entity_id)
        if entity is None:
            return None

        for name, value in patch.items():
            setattr(entity, name, value)

        await self.session.flush()
        return entity

    async def list_by_commerce(self, commerce_id: str) -> List[Any]:
        """List every record of a commerce.

        Args:
            commerce_id: Commerce identifier.

        Returns:
            List of model instances.
        """
        result = await self.session.execute(
            select(self.model).where(self.model.commerce_id == commerce_id)
        )
        return list(result.scalars().all())


class _TransactionRepository(_EntityRepository):
    """Period-marking queries shared by incomes and outcomes."""

    async def list_by_period(self, period_id: str) -> List[Any]:
        """List records marked as belonging to an accounting period."""
        result = await self.session.execute(
            select(self.model).where(self.model.accounting_period_id == period_id)
        )
        return list(result.scalars().all())

    async def mark_closed(
        self,
        entities: Iterable[Any],
        period_id: str,
        closed_at: datetime,
    ) -> int:
        """Mark records as frozen inside a closed period.

        Returns:
            Number of records marked.
        """
        count = 0
        for entity in entities:
            entity.is_closed = True
            entity.accounting_period_id = period_id
            entity.closed_at = closed_at
            count += 1
        await self.session.flush()
        return count

    async def unmark_closed(self, period_id: str) -> int:
        """Clear the closed marker of every record tied to a period.

        Returns:
            Number of records unmarked.
        """
        entities = await self.list_by_period(period_id)
        for entity in entities:
            entity.is_closed = False
            entity.closed_at = None
        await self.session.flush()
        return len(entities)


class IncomeRepository(_TransactionRepository):
    """Repository for Income operations."""

    model = Income


class OutcomeRepository(_TransactionRepository):
    """Repository for Outcome operations."""

    model = Outcome

    async def list_by_auxiliary_id(self, auxiliary_id: str) -> List[Outcome]:
        """List contra-transactions linked to an originating transaction.

        Args:
            auxiliary_id: ID of the originating income or outcome.

        Returns:
            List of Outcome instances ordered by creation time.
        """
        result = await self.session.execute(
            select(Outcome)
            .where(Outcome.auxiliary_id == auxiliary_id)
            .order_by(Outcome.created_at)
        )
        return list(result.scalars().all())


class PeriodRepository(_EntityRepository):
    """Repository for AccountingPeriod operations."""

    model = AccountingPeriod

    async def get_open_by_commerce(self, commerce_id: str) -> Optional[AccountingPeriod]:
        """Get the OPEN period of a commerce, if any."""
        result = await self.session.execute(
            select(AccountingPeriod)
            .where(
                and_(
                    AccountingPeriod.commerce_id == commerce_id,
                    AccountingPeriod.status == PeriodStatus.OPEN.value,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_by_commerce(
        self,
        commerce_id: str,
        statuses: Optional[Iterable[str]] = None,
    ) -> List[AccountingPeriod]:
        """List periods of a commerce, newest first.

        Args:
            commerce_id: Commerce identifier.
            statuses: Optional statuses to filter by.

        Returns:
            List of AccountingPeriod instances ordered by start date desc.
        """
        query = select(AccountingPeriod).where(AccountingPeriod.commerce_id == commerce_id)
        if statuses is not None:
            query = query.where(AccountingPeriod.status.in_(list(statuses)))
        result = await self.session.execute(
            query.order_by(AccountingPeriod.start_date.desc())
        )
        return list(result.scalars().all())

    async def transition_status(
        self,
        period: AccountingPeriod,
        expected_status: str,
        new_status: str,
        patch: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Move a period to a new status if it is still in the expected one.

        The status change is a single conditional UPDATE, so a concurrent
        writer that already moved the period makes this call return False.

        Args:
            period: Period instance to transition.
            expected_status: Status the period must currently have.
            new_status: Status to move to.
            patch: Additional attribute values to set on success.

        Returns:
            True if the transition was applied, False otherwise.
        """
        result = await self.session.execute(
            update(AccountingPeriod)
            .where(
                and_(
                    AccountingPeriod.id == period.id,
                    AccountingPeriod.status == expected_status,
                )
            )
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                f"Period {period.id} status transition {expected_status} -> "
                f"{new_status} lost to a concurrent writer"
            )
            return False

        period.status = new_status
        for name, value in (patch or {}).items():
            setattr(period, name, value)

        await self.session.flush()
        logger.info(f"Period {period.id} status changed to {new_status}")
        return True
