"""
Client ledger: append-only debit/credit log per counterparty.

The integer primary key doubles as the insertion sequence used to order
entries that share a transaction date.
"""

from app.database.database import Base
from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Enum, ForeignKey, Numeric, CheckConstraint, Index, Uuid
from sqlalchemy.sql import func
from app.common.mixins import TenantMixin
import enum


class LedgerReferenceType(enum.Enum):
    OPENING_BALANCE = "opening_balance"
    INVOICE = "invoice"
    PAYMENT = "payment"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"


class LedgerEntry(Base, TenantMixin):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact_id = Column(Uuid(as_uuid=True), ForeignKey("contacts.id"), nullable=False)
    reference_type = Column(Enum(LedgerReferenceType), nullable=False)
    reference_id = Column(Uuid(as_uuid=True), nullable=True)  # None for opening balances
    document_number = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    transaction_date = Column(Date, nullable=False)
    debit = Column(Numeric(18, 2), nullable=False, default=0)
    credit = Column(Numeric(18, 2), nullable=False, default=0)
    created_by = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="ck_ledger_non_negative"),
        Index("idx_ledger_contact_date", "tenant_id", "contact_id", "transaction_date", "id"),
        Index("idx_ledger_reference", "reference_type", "reference_id"),
    )
