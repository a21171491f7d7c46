"""
FastAPI router for payments and their allocation to documents
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from datetime import date

from app.core.config import settings
from app.database.database import get_db
from app.dependencies.companyDependencies import TenantContext
from app.modules.documents.schemas import DocumentOut
from app.modules.payments.models import PaymentType
from app.modules.payments.schemas import (
    PaymentCreate, PaymentList, PaymentOut, PaymentStatistics, PaymentUpdate
)
from app.modules.payments.service import PaymentService

payments_router = APIRouter(prefix="/payments", tags=["Payments"])


@payments_router.post("/", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
def create_payment(
    data: PaymentCreate,
    ctx: TenantContext,
    db: Session = Depends(get_db)
):
    """
    Record a payment and apply it to the listed documents.

    The allocations may not add up to more than the amount; the rest stays
    on the payment as an unallocated advance.
    """
    return PaymentService(db).create_payment(data, ctx)


@payments_router.get("/", response_model=PaymentList)
def list_payments(
    ctx: TenantContext,
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    payment_type: Optional[PaymentType] = Query(None),
    contact_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db)
):
    return PaymentService(db).list_payments(
        ctx.tenant_id, limit=limit, offset=offset, payment_type=payment_type,
        contact_id=contact_id, date_from=date_from, date_to=date_to
    )


@payments_router.get("/unpaid-documents", response_model=List[DocumentOut])
def list_unpaid_documents(
    ctx: TenantContext,
    contact_id: UUID = Query(..., description="Client or provider"),
    db: Session = Depends(get_db)
):
    """Open and partially paid invoices/bills of a counterparty."""
    return PaymentService(db).unpaid_documents(ctx.tenant_id, contact_id)


@payments_router.get("/statistics", response_model=PaymentStatistics)
def get_payment_statistics(
    ctx: TenantContext,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db)
):
    """Totals received and paid out, and the net cash flow, over an optional date range."""
    return PaymentService(db).statistics(ctx.tenant_id, date_from=date_from, date_to=date_to)


@payments_router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(
    payment_id: UUID,
    ctx: TenantContext,
    db: Session = Depends(get_db)
):
    return PaymentService(db).get_payment(payment_id, ctx.tenant_id)


@payments_router.put("/{payment_id}", response_model=PaymentOut)
def update_payment(
    payment_id: UUID,
    data: PaymentUpdate,
    ctx: TenantContext,
    db: Session = Depends(get_db)
):
    """Replace the payment and its allocations; old allocations are reversed first."""
    return PaymentService(db).update_payment(payment_id, data, ctx)


@payments_router.delete("/{payment_id}")
def delete_payment(
    payment_id: UUID,
    ctx: TenantContext,
    db: Session = Depends(get_db)
):
    return PaymentService(db).delete_payment(payment_id, ctx)
