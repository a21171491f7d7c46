"""
Payments and their allocations against documents.

A payment may be spread over several documents; whatever is not allocated
stays on the payment as ``amount_in_excess`` (an advance).
"""

from app.database.database import Base
from sqlalchemy import Column, String, ForeignKey, Numeric, Enum, Date, DateTime, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import date
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, SoftDeleteMixin
from app.modules.documents.models import DocumentType
import enum


# ===== ENUMS =====

class PaymentType(enum.Enum):
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_MADE = "payment_made"
    ADVANCE_PAYMENT_RECEIVED = "advance_payment_received"
    ADVANCE_PAYMENT_MADE = "advance_payment_made"

    @property
    def direction(self) -> str:
        return "received" if self in RECEIVED_TYPES else "made"


RECEIVED_TYPES = (PaymentType.PAYMENT_RECEIVED, PaymentType.ADVANCE_PAYMENT_RECEIVED)


class PaymentMethod(enum.Enum):
    CASH = "cash"
    CASH_MEMO = "cash_memo"
    TDS = "tds"
    TCS = "tcs"
    CREDIT_CARD = "credit_card"
    CHEQUE = "cheque"
    BANK_TRANSFER = "bank_transfer"
    PAY_SLIP = "pay_slip"
    CREDIT_NOTE = "credit_note"
    PAYMENT_GATEWAY = "payment_gateway"
    UPI = "upi"
    QR_CODE = "qr_code"
    OTHER = "other"


# ===== MODELS =====

class Payment(Base, TenantMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    payment_no = Column(String(50), nullable=False, index=True)
    payment_type = Column(Enum(PaymentType), nullable=False)
    contact_id = Column(Uuid(as_uuid=True), ForeignKey("contacts.id"), nullable=False, index=True)
    amount = Column(Numeric(18, 2), nullable=False)
    payment_date = Column(Date, nullable=False, default=date.today)
    method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.CASH)
    reference_no = Column(String(100), nullable=True)
    bank_charges = Column(Numeric(18, 2), nullable=False, default=0)
    memo = Column(Text, nullable=True)

    amount_used_for_allocations = Column(Numeric(18, 2), nullable=False, default=0)
    amount_in_excess = Column(Numeric(18, 2), nullable=False, default=0)

    created_by = Column(Uuid(as_uuid=True), nullable=True)
    updated_by = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    contact = relationship("Contact")
    allocations = relationship("PaymentAllocation", back_populates="payment", cascade="all, delete-orphan")

    @property
    def direction(self) -> str:
        return self.payment_type.direction

    @property
    def credits_client_ledger(self) -> bool:
        return self.payment_type in RECEIVED_TYPES

    def __repr__(self):
        return f"<Payment(payment_no='{self.payment_no}', amount={self.amount})>"


class PaymentAllocation(Base):
    __tablename__ = "payment_allocations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=False, index=True)
    document_id = Column(Uuid(as_uuid=True), ForeignKey("documents.id"), nullable=False, index=True)
    document_type = Column(Enum(DocumentType), nullable=False)
    value = Column(Numeric(18, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    payment = relationship("Payment", back_populates="allocations")
    document = relationship("Document")

    @property
    def document_number(self):
        return self.document.number if self.document else None

    @property
    def document_balance(self):
        return self.document.balance if self.document else None

    @property
    def document_status(self):
        return self.document.status if self.document else None
