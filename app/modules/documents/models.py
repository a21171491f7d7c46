"""
SQLAlchemy models for billing documents.

All document kinds share one table (single-table inheritance on
``document_type``). Each subclass declares its capabilities as class
attributes, so payment allocation and ledger code work against ``Document``
without branching on the concrete type:

- tracks_balance: carries a balance that payments reduce
- counterparty_roles: contact roles accepted as counterparty
- accepts_withholding: TDS/TCS entries allowed
- payment_direction: payment types that may allocate to it
"""

from app.database.database import Base
from sqlalchemy import (
    Column, String, Boolean, ForeignKey, Numeric, Enum, Date, Text, Integer,
    UniqueConstraint, Uuid
)
from sqlalchemy.orm import relationship
from datetime import date
from decimal import Decimal
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, SoftDeleteMixin
from app.common.validators import ZERO, money
from app.modules.contacts.models import ContactType
from app.modules.documents.status import DocumentStatus, status_for_balance, can_transition
from app.modules.taxes.schemas import WithholdingKind, WithholdingBase
import enum


# ===== ENUMS =====

class DocumentType(enum.Enum):
    INVOICE = "invoice"
    PURCHASE_BILL = "purchase_bill"
    PURCHASE_ORDER = "purchase_order"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"


# ===== MODELS =====

class Document(Base, TenantMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "documents"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    document_type = Column(Enum(DocumentType), nullable=False, index=True)
    number = Column(String(50), nullable=False)
    contact_id = Column(Uuid(as_uuid=True), ForeignKey("contacts.id"), nullable=False, index=True)
    counterparty_role = Column(Enum(ContactType), nullable=False)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.OPEN, index=True)

    issue_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)  # Purchase orders

    # Tax context
    place_of_supply = Column(String(100), nullable=True)
    is_inter_jurisdiction = Column(Boolean, nullable=False, default=False)
    reverse_charge = Column(Boolean, nullable=False, default=False)
    cess_enabled = Column(Boolean, nullable=False, default=False)
    add_discount_to_all = Column(Numeric(5, 2), nullable=True)

    # Totals
    subtotal = Column(Numeric(18, 2), nullable=False, default=0)
    discount_total = Column(Numeric(18, 2), nullable=False, default=0)
    taxable_amount = Column(Numeric(18, 2), nullable=False, default=0)
    cgst_amount = Column(Numeric(18, 2), nullable=False, default=0)
    sgst_amount = Column(Numeric(18, 2), nullable=False, default=0)
    igst_amount = Column(Numeric(18, 2), nullable=False, default=0)
    cess_amount = Column(Numeric(18, 2), nullable=False, default=0)
    shipping_amount = Column(Numeric(18, 2), nullable=False, default=0)
    shipping_tax_pct = Column(Numeric(5, 2), nullable=False, default=0)
    shipping_tax_amount = Column(Numeric(18, 2), nullable=False, default=0)
    tds_total = Column(Numeric(18, 2), nullable=False, default=0)
    tcs_total = Column(Numeric(18, 2), nullable=False, default=0)
    tax_total = Column(Numeric(18, 2), nullable=False, default=0)
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)
    balance = Column(Numeric(18, 2), nullable=True)  # Only for balance-tracking types

    # Credit/debit notes point at the invoice or bill they adjust;
    # purchase bills converted from an order point at the order
    related_document_id = Column(Uuid(as_uuid=True), ForeignKey("documents.id"), nullable=True)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)

    created_by = Column(Uuid(as_uuid=True), nullable=True)
    updated_by = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    contact = relationship("Contact")
    items = relationship(
        "DocumentLineItem", back_populates="document",
        cascade="all, delete-orphan", order_by="DocumentLineItem.position"
    )
    withholdings = relationship(
        "DocumentWithholding", back_populates="document", cascade="all, delete-orphan"
    )
    related_document = relationship("Document", remote_side=[id])

    __table_args__ = (
        UniqueConstraint("tenant_id", "document_type", "number", name="uq_document_tenant_type_number"),
    )

    __mapper_args__ = {
        "polymorphic_on": document_type,
    }

    # Capabilities (overridden per type)
    tracks_balance = False
    counterparty_roles = (ContactType.CLIENT,)
    accepts_withholding = False
    payment_direction = None  # "received" / "made"
    number_prefix = "DOC-"
    status_labels = {
        DocumentStatus.OPEN: "Open",
        DocumentStatus.PARTIALLY_PAID: "Partially Paid",
        DocumentStatus.PAID: "Paid",
        DocumentStatus.CANCELLED: "Cancelled",
        DocumentStatus.DELETED: "Deleted",
        DocumentStatus.CONVERTED: "Converted",
    }

    @property
    def status_label(self) -> str:
        return self.status_labels.get(self.status, self.status.value)

    @property
    def allocated_amount(self) -> Decimal:
        if not self.tracks_balance or self.balance is None:
            return ZERO
        return money(self.total_amount) - money(self.balance)

    def transition_to(self, target: DocumentStatus) -> None:
        if not can_transition(self.status, target):
            raise ValueError(f"Cannot move {self.document_type.value} from {self.status.value} to {target.value}")
        self.status = target

    def reset_balance(self, allocated: Decimal = ZERO) -> None:
        """Set balance from the current total minus what payments already cover"""
        if not self.tracks_balance:
            self.balance = None
            return
        self.balance = money(self.total_amount) - money(allocated)
        self.status = status_for_balance(self.balance, money(self.total_amount))

    def apply_allocation(self, value: Decimal) -> None:
        if not self.tracks_balance:
            return
        self.balance = money(self.balance) - money(value)
        self.transition_to(status_for_balance(self.balance, money(self.total_amount)))

    def restore_allocation(self, value: Decimal) -> None:
        """Add a reversed allocation back, whatever the current status"""
        if not self.tracks_balance:
            return
        self.balance = money(self.balance) + money(value)
        if self.status not in (DocumentStatus.CANCELLED, DocumentStatus.DELETED):
            self.status = status_for_balance(self.balance, money(self.total_amount))

    def __repr__(self):
        return f"<{type(self).__name__}(number='{self.number}', status={self.status}, balance={self.balance})>"


class Invoice(Document):
    __mapper_args__ = {"polymorphic_identity": DocumentType.INVOICE}

    tracks_balance = True
    counterparty_roles = (ContactType.CLIENT,)
    payment_direction = "received"
    number_prefix = "INV-"
    status_labels = {**Document.status_labels, DocumentStatus.OPEN: "Unpaid"}


class PurchaseBill(Document):
    __mapper_args__ = {"polymorphic_identity": DocumentType.PURCHASE_BILL}

    tracks_balance = True
    counterparty_roles = (ContactType.PROVIDER,)
    accepts_withholding = True
    payment_direction = "made"
    number_prefix = "BILL-"
    status_labels = {**Document.status_labels, DocumentStatus.PAID: "Closed"}


class PurchaseOrder(Document):
    """Advance payments may be linked to an order but it has no balance"""
    __mapper_args__ = {"polymorphic_identity": DocumentType.PURCHASE_ORDER}

    counterparty_roles = (ContactType.PROVIDER,)
    accepts_withholding = True
    payment_direction = "made"
    number_prefix = "PO-"


class CreditNote(Document):
    __mapper_args__ = {"polymorphic_identity": DocumentType.CREDIT_NOTE}

    counterparty_roles = (ContactType.CLIENT,)
    number_prefix = "CN-"


class DebitNote(Document):
    __mapper_args__ = {"polymorphic_identity": DocumentType.DEBIT_NOTE}

    counterparty_roles = (ContactType.CLIENT, ContactType.PROVIDER)
    number_prefix = "DN-"


DOCUMENT_CLASSES = {
    DocumentType.INVOICE: Invoice,
    DocumentType.PURCHASE_BILL: PurchaseBill,
    DocumentType.PURCHASE_ORDER: PurchaseOrder,
    DocumentType.CREDIT_NOTE: CreditNote,
    DocumentType.DEBIT_NOTE: DebitNote,
}


class DocumentLineItem(Base, TimestampMixin):
    """
    Document line with a snapshot of the catalog item taken at creation.
    Later catalog changes do not alter issued documents.
    """
    __tablename__ = "document_line_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    document_id = Column(Uuid(as_uuid=True), ForeignKey("documents.id"), nullable=False, index=True)
    item_id = Column(Uuid(as_uuid=True), ForeignKey("items.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # Catalog snapshot
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    hsn_code = Column(String(20), nullable=True)
    sac_code = Column(String(20), nullable=True)
    unit_id = Column(Uuid(as_uuid=True), nullable=True)
    unit_name = Column(String(50), nullable=True)

    quantity = Column(Numeric(18, 3), nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)
    discount_pct = Column(Numeric(5, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    cess_rate = Column(Numeric(5, 2), nullable=False, default=0)

    # Computed amounts
    discount_amount = Column(Numeric(18, 2), nullable=False, default=0)
    taxable_amount = Column(Numeric(18, 2), nullable=False, default=0)
    cgst_amount = Column(Numeric(18, 2), nullable=False, default=0)
    sgst_amount = Column(Numeric(18, 2), nullable=False, default=0)
    igst_amount = Column(Numeric(18, 2), nullable=False, default=0)
    cess_amount = Column(Numeric(18, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(18, 2), nullable=False, default=0)
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)

    document = relationship("Document", back_populates="items")


class DocumentWithholding(Base):
    __tablename__ = "document_withholdings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    document_id = Column(Uuid(as_uuid=True), ForeignKey("documents.id"), nullable=False, index=True)
    kind = Column(Enum(WithholdingKind), nullable=False)
    name = Column(String(100), nullable=True)
    percentage = Column(Numeric(5, 2), nullable=False)
    applies_to = Column(Enum(WithholdingBase), nullable=False, default=WithholdingBase.TAXABLE)
    amount = Column(Numeric(18, 2), nullable=False, default=0)

    document = relationship("Document", back_populates="withholdings")


class DocumentSequence(Base, TenantMixin):
    """Per-tenant numbering for each document type"""
    __tablename__ = "document_sequences"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    document_type = Column(Enum(DocumentType), nullable=False)
    prefix = Column(String(10), nullable=False)
    current_number = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "document_type", name="uq_sequence_tenant_type"),
    )
