from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from enum import Enum

from app.common.validators import ZERO, validate_percentage


class WithholdingKind(str, Enum):
    TDS = "tds"  # Tax deducted at source, reduces the payable total
    TCS = "tcs"  # Tax collected at source, increases the payable total


class WithholdingBase(str, Enum):
    TAXABLE = "taxable"
    TOTAL = "total"


class WithholdingEntry(BaseModel):
    """One TDS/TCS deduction requested on a document"""
    kind: WithholdingKind
    percentage: Decimal = Field(..., ge=0, le=100)
    applies_to: WithholdingBase = WithholdingBase.TAXABLE
    name: Optional[str] = Field(None, max_length=100)

    @field_validator('percentage', mode='before')
    @classmethod
    def validate_percentage(cls, v):
        return validate_percentage(v, "withholding percentage")


class WithholdingAmount(WithholdingEntry):
    amount: Decimal


class LineComputation(BaseModel):
    """Amounts of a single line, each rounded to 2 decimals"""
    gross_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    cgst_amount: Decimal = ZERO
    sgst_amount: Decimal = ZERO
    igst_amount: Decimal = ZERO
    cess_amount: Decimal = ZERO
    tax_amount: Decimal
    total_amount: Decimal


class DocumentTotals(BaseModel):
    subtotal: Decimal = ZERO
    discount_total: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    cgst_amount: Decimal = ZERO
    sgst_amount: Decimal = ZERO
    igst_amount: Decimal = ZERO
    cess_amount: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    shipping_tax_amount: Decimal = ZERO
    tax_total: Decimal = ZERO
    total_before_withholding: Decimal = ZERO
    tds_total: Decimal = ZERO
    tcs_total: Decimal = ZERO
    total_amount: Decimal = ZERO
    withholdings: List[WithholdingAmount] = []
