"""
FastAPI router for client ledgers and balances
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from datetime import date

from app.common.transaction import transaction_scope
from app.database.database import get_db
from app.dependencies.companyDependencies import TenantContext
from app.modules.contacts.models import ContactType
from app.modules.contacts.service import ContactService
from app.modules.ledger.schemas import (
    ContactBalance, ContactBalanceList, LedgerStatement, LedgerSummary, OpeningBalanceSet
)
from app.modules.ledger.service import LedgerService

ledger_router = APIRouter(tags=["Client Ledger"])


@ledger_router.get("/clients/{contact_id}/ledger", response_model=LedgerStatement)
def get_client_ledger(
    contact_id: UUID,
    ctx: TenantContext,
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    """Ledger lines with running balance, oldest first."""
    return LedgerService(db).running_balance(
        ctx.tenant_id, contact_id, date_from=date_from, date_to=date_to, limit=limit, offset=offset
    )


@ledger_router.get("/clients/{contact_id}/balance", response_model=ContactBalance)
def get_client_balance(
    contact_id: UUID,
    ctx: TenantContext,
    db: Session = Depends(get_db)
):
    return LedgerService(db).current_balance(ctx.tenant_id, contact_id)


@ledger_router.get("/clients/{contact_id}/ledger/summary", response_model=LedgerSummary)
def get_client_ledger_summary(
    contact_id: UUID,
    ctx: TenantContext,
    db: Session = Depends(get_db)
):
    return LedgerService(db).summary(ctx.tenant_id, contact_id)


@ledger_router.put("/clients/{contact_id}/opening-balance", response_model=ContactBalance)
def set_client_opening_balance(
    contact_id: UUID,
    data: OpeningBalanceSet,
    ctx: TenantContext,
    db: Session = Depends(get_db)
):
    """Replace the opening balance. Zero removes it."""
    service = LedgerService(db)
    with transaction_scope(db, "opening balance update"):
        ContactService(db).get_counterparty(ctx.tenant_id, contact_id, role=ContactType.CLIENT)
        service.set_opening_balance(ctx, contact_id, data.amount, data.as_of)
    return service.current_balance(ctx.tenant_id, contact_id)


@ledger_router.get("/ledger/balances", response_model=ContactBalanceList)
def list_client_balances(
    ctx: TenantContext,
    include_zero: bool = Query(False),
    db: Session = Depends(get_db)
):
    """Balance of every client, largest receivable first."""
    return LedgerService(db).balances(ctx.tenant_id, include_zero=include_zero)
