from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from app.modules.documents.models import DocumentType
from app.modules.documents.status import DocumentStatus
from app.modules.payments.models import PaymentType, PaymentMethod


# ===== INPUT =====

class AllocationCreate(BaseModel):
    document_id: UUID
    document_type: DocumentType
    value: Decimal = Field(..., gt=0, description="Amount applied to the document")

    @field_validator('value')
    @classmethod
    def validate_value(cls, v):
        if v.as_tuple().exponent < -2:
            raise ValueError('Allocation value cannot have more than 2 decimals')
        return v


class PaymentCreate(BaseModel):
    payment_type: PaymentType
    contact_id: UUID
    payment_no: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.CASH
    payment_date: Optional[date] = None
    reference_no: Optional[str] = Field(None, max_length=100)
    bank_charges: Decimal = Field(Decimal('0'), ge=0)
    memo: Optional[str] = None
    allocations: List[AllocationCreate] = []

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v):
        if v.as_tuple().exponent < -2:
            raise ValueError('Amount cannot have more than 2 decimals')
        return v

    @field_validator('allocations')
    @classmethod
    def validate_unique_documents(cls, v):
        seen = set()
        for allocation in v:
            if allocation.document_id in seen:
                raise ValueError(f'Document {allocation.document_id} appears more than once')
            seen.add(allocation.document_id)
        return v


class PaymentUpdate(PaymentCreate):
    """Updates reverse every previous allocation before applying these"""
    pass


# ===== OUTPUT =====

class AllocationOut(BaseModel):
    id: UUID
    document_id: UUID
    document_type: DocumentType
    value: Decimal
    document_number: Optional[str] = None
    document_balance: Optional[Decimal] = None
    document_status: Optional[DocumentStatus] = None

    class Config:
        from_attributes = True


class PaymentOut(BaseModel):
    id: UUID
    payment_no: str
    payment_type: PaymentType
    contact_id: UUID
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    reference_no: Optional[str] = None
    bank_charges: Decimal
    memo: Optional[str] = None
    amount_used_for_allocations: Decimal
    amount_in_excess: Decimal
    allocations: List[AllocationOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentList(BaseModel):
    items: List[PaymentOut]
    total: int
    limit: int
    offset: int


class DocumentPaymentOut(BaseModel):
    """One payment applied to a document"""
    payment_id: UUID
    payment_no: str
    payment_type: PaymentType
    payment_date: date
    method: PaymentMethod
    reference_no: Optional[str] = None
    value: Decimal


class DocumentPaymentHistory(BaseModel):
    document_id: UUID
    document_type: DocumentType
    number: str
    total_amount: Decimal
    balance: Optional[Decimal] = None
    status: DocumentStatus
    amount_paid: Decimal
    payments: List[DocumentPaymentOut]


class PaymentStatistics(BaseModel):
    total_received: Decimal
    total_paid: Decimal
    net_cash_flow: Decimal
    received_count: int
    paid_count: int
