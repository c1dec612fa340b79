"""SQLAlchemy models for ledger persistence."""

import uuid
import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    Numeric,
    Boolean,
    DateTime,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import enum


MONEY = Numeric(14, 2, asdecimal=True)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PeriodStatus(str, enum.Enum):
    """Accounting period lifecycle states."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    LOCKED = "LOCKED"


class IncomeStatus(str, enum.Enum):
    """Income confirmation states."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class OutcomeStatus(str, enum.Enum):
    """Outcome confirmation states."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


def _json_dumps(value: Any) -> str:
    return json.dumps(value, default=str)


class AccountingPeriod(Base):
    """A named date range over which a commerce's transactions are frozen."""
    __tablename__ = "accounting_periods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    commerce_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PeriodStatus.OPEN.value)

    # Frozen snapshot, only meaningful once CLOSED/LOCKED
    totals_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reconciliation_data_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Audit trail
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    closed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reopened_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reopened_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    locked_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_accounting_periods_commerce_id", "commerce_id"),
        Index("ix_accounting_periods_status", "status"),
    )

    @property
    def totals(self) -> Optional[Dict[str, Any]]:
        """Get the totals snapshot as dictionary."""
        if self.totals_json:
            return json.loads(self.totals_json)
        return None

    @totals.setter
    def totals(self, value: Optional[Dict[str, Any]]) -> None:
        """Set the totals snapshot from dictionary."""
        if value is not None:
            self.totals_json = _json_dumps(value)
        else:
            self.totals_json = None

    @property
    def reconciliation_data(self) -> Optional[Dict[str, Any]]:
        """Get reconciliation data as dictionary."""
        if self.reconciliation_data_json:
            return json.loads(self.reconciliation_data_json)
        return None

    @reconciliation_data.setter
    def reconciliation_data(self, value: Optional[Dict[str, Any]]) -> None:
        """Set reconciliation data from dictionary."""
        if value is not None:
            self.reconciliation_data_json = _json_dumps(value)
        else:
            self.reconciliation_data_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert period to dictionary representation."""
        return {
            "id": self.id,
            "commerce_id": self.commerce_id,
            "name": self.name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
            "totals": self.totals,
            "reconciliation_data": self.reconciliation_data,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "closed_by": self.closed_by,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "reopened_by": self.reopened_by,
            "reopened_at": self.reopened_at.isoformat() if self.reopened_at else None,
            "locked_by": self.locked_by,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }


class Income(Base):
    """Money received by the commerce."""
    __tablename__ = "incomes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    commerce_id: Mapped[str] = mapped_column(String(255), nullable=False)
    client_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=IncomeStatus.PENDING.value)

    # Professional commission tracking
    professional_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    professional_commission: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    commission_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    commission_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Period close markers
    accounting_period_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    refund_metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_incomes_commerce_id", "commerce_id"),
        Index("ix_incomes_paid_at", "paid_at"),
        Index("ix_incomes_accounting_period_id", "accounting_period_id"),
    )

    @property
    def refund_metadata(self) -> Optional[Dict[str, Any]]:
        """Get refund metadata as dictionary."""
        if self.refund_metadata_json:
            return json.loads(self.refund_metadata_json)
        return None

    @refund_metadata.setter
    def refund_metadata(self, value: Optional[Dict[str, Any]]) -> None:
        """Set refund metadata from dictionary."""
        if value is not None:
            self.refund_metadata_json = _json_dumps(value)
        else:
            self.refund_metadata_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert income to dictionary representation."""
        return {
            "id": self.id,
            "commerce_id": self.commerce_id,
            "client_id": self.client_id,
            "amount": str(self.amount),
            "status": self.status,
            "professional_id": self.professional_id,
            "professional_commission": str(self.professional_commission),
            "commission_paid": self.commission_paid,
            "commission_payment_id": self.commission_payment_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "accounting_period_id": self.accounting_period_id,
            "is_closed": self.is_closed,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "refund_metadata": self.refund_metadata,
        }


class Outcome(Base):
    """Money paid out by the commerce, including refund contra-transactions."""
    __tablename__ = "outcomes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    commerce_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    concept_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    beneficiary: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Links a refund or reversal to the income it reverses
    auxiliary_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OutcomeStatus.PENDING.value)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, default=datetime.utcnow)

    accounting_period_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_outcomes_commerce_id", "commerce_id"),
        Index("ix_outcomes_auxiliary_id", "auxiliary_id"),
        Index("ix_outcomes_accounting_period_id", "accounting_period_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert outcome to dictionary representation."""
        return {
            "id": self.id,
            "commerce_id": self.commerce_id,
            "amount": str(self.amount),
            "concept_type": self.concept_type,
            "type": self.type,
            "description": self.description,
            "beneficiary": self.beneficiary,
            "client_id": self.client_id,
            "auxiliary_id": self.auxiliary_id,
            "status": self.status,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "accounting_period_id": self.accounting_period_id,
            "is_closed": self.is_closed,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }
