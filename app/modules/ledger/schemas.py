from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date
from enum import Enum

from app.modules.ledger.models import LedgerReferenceType


class BalanceStatus(str, Enum):
    RECEIVABLE = "Receivable"  # Client owes us
    ADVANCE = "Advance"        # We hold client money
    SETTLED = "Settled"


class LedgerLine(BaseModel):
    id: int
    transaction_date: date
    reference_type: LedgerReferenceType
    reference_id: Optional[UUID] = None
    document_number: Optional[str] = None
    description: Optional[str] = None
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


class LedgerStatement(BaseModel):
    contact_id: UUID
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    opening_balance: Decimal
    closing_balance: Decimal
    total: int
    limit: Optional[int] = None
    offset: int = 0
    entries: List[LedgerLine]


class ContactBalance(BaseModel):
    contact_id: UUID
    contact_name: Optional[str] = None
    balance: Decimal
    status: BalanceStatus


class LedgerSummary(ContactBalance):
    total_debit: Decimal
    total_credit: Decimal
    entry_count: int


class ContactBalanceList(BaseModel):
    items: List[ContactBalance]
    total: int


class OpeningBalanceSet(BaseModel):
    amount: Decimal = Field(..., description="Positive: client owes us. Negative: advance held.")
    as_of: Optional[date] = None
