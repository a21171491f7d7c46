"""
Pydantic schemas for billing documents (input validation and output shapes)
"""

from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from app.common.validators import validate_percentage
from app.modules.contacts.models import ContactType
from app.modules.documents.models import DocumentType
from app.modules.documents.status import DocumentStatus
from app.modules.taxes.schemas import WithholdingEntry, WithholdingKind, WithholdingBase


# ===== INPUT =====

class LineItemCreate(BaseModel):
    item_id: UUID = Field(..., description="Catalog item")
    quantity: Optional[Decimal] = Field(None, description="Defaults to 1")
    unit_price: Optional[Decimal] = Field(None, description="Defaults to the catalog price")
    discount_pct: Optional[Decimal] = Field(None, description="Line discount percentage (0-100)")


class DocumentCreate(BaseModel):
    contact_id: UUID
    counterparty_role: Optional[ContactType] = Field(
        None, description="Debit notes only: bill the contact as client or as provider"
    )
    place_of_supply: Optional[str] = Field(None, max_length=100, description="Defaults to the contact's state")
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    valid_until: Optional[date] = None
    items: List[LineItemCreate] = Field(..., min_length=1)
    shipping_amount: Decimal = Field(Decimal('0'), ge=0)
    shipping_tax_pct: Decimal = Field(Decimal('0'), ge=0, le=100)
    cess_enabled: bool = False
    reverse_charge: bool = False
    add_discount_to_all: Optional[Decimal] = None
    withholding: List[WithholdingEntry] = []
    related_document_id: Optional[UUID] = Field(None, description="Invoice or bill adjusted by a credit/debit note")
    reason: Optional[str] = None
    notes: Optional[str] = None
    terms: Optional[str] = None

    @field_validator('add_discount_to_all', mode='before')
    @classmethod
    def validate_global_discount(cls, v):
        return validate_percentage(v, "add_discount_to_all")


class DocumentUpdate(DocumentCreate):
    """Updates replace the items and settings in full"""
    pass


# ===== OUTPUT =====

class LineItemOut(BaseModel):
    id: UUID
    item_id: UUID
    position: int
    name: str
    description: Optional[str] = None
    hsn_code: Optional[str] = None
    sac_code: Optional[str] = None
    unit_name: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    discount_pct: Decimal
    tax_rate: Decimal
    cess_rate: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    cess_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    class Config:
        from_attributes = True


class WithholdingOut(BaseModel):
    kind: WithholdingKind
    name: Optional[str] = None
    percentage: Decimal
    applies_to: WithholdingBase
    amount: Decimal

    class Config:
        from_attributes = True


class DocumentOut(BaseModel):
    id: UUID
    document_type: DocumentType
    number: str
    contact_id: UUID
    counterparty_role: ContactType
    status: DocumentStatus
    status_label: str
    issue_date: date
    due_date: Optional[date] = None
    valid_until: Optional[date] = None
    place_of_supply: Optional[str] = None
    is_inter_jurisdiction: bool
    reverse_charge: bool
    cess_enabled: bool
    add_discount_to_all: Optional[Decimal] = None
    subtotal: Decimal
    discount_total: Decimal
    taxable_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    cess_amount: Decimal
    shipping_amount: Decimal
    shipping_tax_pct: Decimal
    shipping_tax_amount: Decimal
    tds_total: Decimal
    tcs_total: Decimal
    tax_total: Decimal
    total_amount: Decimal
    balance: Optional[Decimal] = None
    related_document_id: Optional[UUID] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DocumentDetail(DocumentOut):
    items: List[LineItemOut] = []
    withholdings: List[WithholdingOut] = []


class DocumentList(BaseModel):
    items: List[DocumentOut]
    total: int
    limit: int
    offset: int
