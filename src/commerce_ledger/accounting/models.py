"""Value models for period totals, refunds and reconciliation data."""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class ConceptCategory(str, enum.Enum):
    """Accounting category of an outcome."""
    EXPENSE = "expense"
    PAYMENT_REFUND = "payment-refund"
    COMMISSION_REVERSAL = "commission-reversal"


class RefundType(str, enum.Enum):
    """Concept types a refund outcome can be recorded with."""
    PAYMENT_REFUND = "payment-refund"
    SERVICE_REFUND = "service-refund"
    CANCELLATION_REFUND = "cancellation-refund"


class RefundReason(str, enum.Enum):
    """Why a refund was granted."""
    CUSTOMER_REQUEST = "customer-request"
    SERVICE_ISSUE = "service-issue"
    TECHNICAL_ERROR = "technical-error"
    DUPLICATE_PAYMENT = "duplicate-payment"
    POLICY_VIOLATION = "policy-violation"
    OTHER = "other"


REFUND_REASON_LABELS: Dict[RefundReason, str] = {
    RefundReason.CUSTOMER_REQUEST: "Solicitud del cliente",
    RefundReason.SERVICE_ISSUE: "Problema con el servicio",
    RefundReason.TECHNICAL_ERROR: "Error técnico",
    RefundReason.DUPLICATE_PAYMENT: "Pago duplicado",
    RefundReason.POLICY_VIOLATION: "Violación de políticas",
    RefundReason.OTHER: "Otro motivo",
}


class PeriodTotals(BaseModel):
    """Aggregated figures of one accounting period."""
    total_incomes: Decimal = Field(default=Decimal("0"))
    total_outcomes: Decimal = Field(default=Decimal("0"))
    total_commissions: Decimal = Field(default=Decimal("0"))
    total_refunds: Decimal = Field(default=Decimal("0"))
    total_commission_reversals: Decimal = Field(default=Decimal("0"))
    net_amount: Decimal = Field(default=Decimal("0"))
    incomes_count: int = Field(default=0, description="Incomes contributing to total_incomes")
    outcomes_count: int = Field(default=0, description="Expenses contributing to total_outcomes")

    def to_snapshot(self) -> Dict[str, Any]:
        """Return a JSON-safe dictionary for persisting inside a period."""
        return self.model_dump(mode="json")


class ReconciliationData(BaseModel):
    """Bank reconciliation figures recorded when a period is closed."""
    bank_balance: Optional[Decimal] = None
    system_balance: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    notes: Optional[str] = None


class RefundHistoryEntry(BaseModel):
    """One refund outcome as recorded in an income's refund metadata."""
    refund_id: str
    amount: Decimal
    type: Optional[str] = None
    category: str = "refund"
    reason: Optional[str] = None
    date: Optional[datetime] = None


class CommissionReversalEntry(BaseModel):
    """One commission reversal outcome as recorded in an income's refund metadata."""
    reversal_id: str
    amount: Decimal
    type: Optional[str] = None
    category: str = "commission-reversal"
    reason: Optional[str] = None
    date: Optional[datetime] = None


class RefundMetadata(BaseModel):
    """Refund state of an income, rebuilt from its contra-transactions."""
    is_refunded: bool = False
    total_refunded: Decimal = Decimal("0")
    refund_count: int = 0
    original_amount: Decimal = Decimal("0")
    total_commission_reversed: Decimal = Decimal("0")
    commission_reversal_count: int = 0
    refund_history: List[RefundHistoryEntry] = Field(default_factory=list)
    commission_reversal_history: List[CommissionReversalEntry] = Field(default_factory=list)
    last_refund_id: Optional[str] = None
    last_refund_at: Optional[datetime] = None


class RefundResult(BaseModel):
    """Outcome of a successful refund request."""
    success: bool = True
    refund_id: str
    commission_reversal_id: Optional[str] = None
    original_transaction_id: str
    amount: Decimal
    commission_reversed: Decimal = Decimal("0")
