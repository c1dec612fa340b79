"""API endpoints for accounting periods and refunds."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..auth import verify_api_key, limiter, MUTATION_RATE_LIMIT
from .models import PeriodTotals, ReconciliationData, RefundReason, RefundResult, RefundType
from .period_service import AccountingPeriodService
from .refund_service import RefundService

logger = logging.getLogger(__name__)

period_router = APIRouter(prefix="/periods", tags=["periods"])
refund_router = APIRouter(prefix="/refunds", tags=["refunds"])


class CreatePeriodBody(BaseModel):
    """Request body for opening a new accounting period."""
    commerce_id: str = Field(..., description="Commerce the period belongs to")
    name: str = Field(..., description="Display name, e.g. 'Enero 2025'")
    start_date: datetime = Field(..., description="Inclusive start of the period")
    end_date: datetime = Field(..., description="Inclusive end of the period")
    created_by: str = Field(..., description="User opening the period")
    notes: Optional[str] = None


class ClosePeriodBody(BaseModel):
    """Request body for closing a period."""
    closed_by: str
    notes: Optional[str] = None
    reconciliation_data: Optional[ReconciliationData] = None


class ReopenPeriodBody(BaseModel):
    """Request body for reopening a closed period."""
    reopened_by: str
    reason: str = Field(..., min_length=1)


class LockPeriodBody(BaseModel):
    """Request body for locking a closed period."""
    locked_by: str
    reason: str = Field(..., min_length=1)


class CreateRefundBody(BaseModel):
    """Request body for refunding a transaction."""
    original_transaction_id: str = Field(..., description="Income or outcome being refunded")
    amount: Decimal = Field(..., description="Refund amount")
    type: RefundType = Field(default=RefundType.PAYMENT_REFUND)
    reason: RefundReason
    description: Optional[str] = None
    client_id: Optional[str] = None
    professional_id: Optional[str] = None
    commerce_id: Optional[str] = None


class RejectRefundBody(BaseModel):
    """Request body for rejecting a refund."""
    reason: str = Field(..., min_length=1)
    commerce_id: Optional[str] = None


# ----------------------------------------------------------------- periods


@period_router.post("", status_code=201)
@limiter.limit(MUTATION_RATE_LIMIT)
async def create_period(
    request: Request,
    body: CreatePeriodBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Open a new accounting period for a commerce."""
    service = AccountingPeriodService(db)
    period = await service.create_period(
        commerce_id=body.commerce_id,
        name=body.name,
        start_date=body.start_date,
        end_date=body.end_date,
        created_by=body.created_by,
        notes=body.notes,
    )
    return period.to_dict()


@period_router.get("")
async def list_periods(
    commerce_id: str = Query(..., description="Commerce identifier"),
    search: Optional[str] = Query(default=None, description="Text to match in name or notes"),
    status: Optional[str] = Query(default=None, description="OPEN, CLOSED or LOCKED"),
    year: Optional[int] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: Optional[int] = Query(default=None, ge=0),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> List[Dict[str, Any]]:
    """List a commerce's accounting periods, newest first."""
    service = AccountingPeriodService(db)
    periods = await service.list_periods(
        commerce_id,
        search_text=search,
        status=status,
        year=year,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return [p.to_dict() for p in periods]


@period_router.get("/current")
async def get_current_period(
    commerce_id: str = Query(..., description="Commerce identifier"),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Get the commerce's OPEN period."""
    service = AccountingPeriodService(db)
    period = await service.get_current_open_period(commerce_id)
    if period is None:
        raise HTTPException(status_code=404, detail="No hay un período abierto")
    return period.to_dict()


@period_router.get("/{period_id}")
async def get_period(
    period_id: str,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Get one accounting period."""
    service = AccountingPeriodService(db)
    period = await service.get_period(period_id)
    return period.to_dict()


@period_router.get("/{period_id}/summary", response_model=PeriodTotals)
async def get_period_summary(
    period_id: str,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """
    Get a period's totals.

    OPEN periods are recomputed from the current transactions; CLOSED and
    LOCKED periods return the snapshot taken when they were closed.
    """
    service = AccountingPeriodService(db)
    return await service.get_period_summary(period_id)


@period_router.get("/{period_id}/transactions")
async def get_period_transactions(
    period_id: str,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Get the incomes and outcomes dated inside a period."""
    service = AccountingPeriodService(db)
    transactions = await service.get_period_transactions(period_id)
    return {
        "incomes": [i.to_dict() for i in transactions["incomes"]],
        "outcomes": [o.to_dict() for o in transactions["outcomes"]],
    }


@period_router.post("/{period_id}/close")
@limiter.limit(MUTATION_RATE_LIMIT)
async def close_period(
    request: Request,
    period_id: str,
    body: ClosePeriodBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """
    Close an OPEN period.

    Fails with 409 while the period still has pending incomes or outcomes.
    """
    service = AccountingPeriodService(db)
    period = await service.close_period(
        period_id,
        closed_by=body.closed_by,
        notes=body.notes,
        reconciliation_data=body.reconciliation_data,
    )
    return period.to_dict()


@period_router.post("/{period_id}/reopen")
@limiter.limit(MUTATION_RATE_LIMIT)
async def reopen_period(
    request: Request,
    period_id: str,
    body: ReopenPeriodBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Reopen a CLOSED period."""
    service = AccountingPeriodService(db)
    period = await service.reopen_period(period_id, body.reopened_by, body.reason)
    return period.to_dict()


@period_router.post("/{period_id}/lock")
@limiter.limit(MUTATION_RATE_LIMIT)
async def lock_period(
    request: Request,
    period_id: str,
    body: LockPeriodBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Lock a CLOSED period permanently."""
    service = AccountingPeriodService(db)
    period = await service.lock_period(period_id, body.locked_by, body.reason)
    return period.to_dict()


# ----------------------------------------------------------------- refunds


@refund_router.post("", status_code=201, response_model=RefundResult)
@limiter.limit(MUTATION_RATE_LIMIT)
async def create_refund(
    request: Request,
    body: CreateRefundBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """
    Refund part or all of a transaction.

    When the original income had its professional commission paid, a
    proportional commission reversal is recorded alongside the refund.
    """
    service = RefundService(db)
    return await service.process_refund(
        original_transaction_id=body.original_transaction_id,
        amount=body.amount,
        reason=body.reason,
        client_id=body.client_id,
        professional_id=body.professional_id,
        refund_type=body.type,
        description=body.description,
        commerce_id=body.commerce_id,
    )


@refund_router.get("")
async def list_refunds(
    commerce_id: str = Query(..., description="Commerce identifier"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    type: Optional[str] = Query(default=None, description="Refund concept type"),
    status: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """List a commerce's refunds, newest first."""
    service = RefundService(db)
    return await service.list_refunds(
        commerce_id, page=page, limit=limit, refund_type=type, status=status
    )


@refund_router.get("/{refund_id}")
async def get_refund(
    refund_id: str,
    commerce_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Get one refund."""
    service = RefundService(db)
    return await service.get_refund(refund_id, commerce_id)


@refund_router.post("/{refund_id}/approve")
@limiter.limit(MUTATION_RATE_LIMIT)
async def approve_refund(
    request: Request,
    refund_id: str,
    commerce_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Approve a refund."""
    service = RefundService(db)
    return await service.approve_refund(refund_id, commerce_id)


@refund_router.post("/{refund_id}/reject")
@limiter.limit(MUTATION_RATE_LIMIT)
async def reject_refund(
    request: Request,
    refund_id: str,
    body: RejectRefundBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Reject a refund, recording the reason in its description."""
    service = RefundService(db)
    return await service.reject_refund(refund_id, body.reason, body.commerce_id)

