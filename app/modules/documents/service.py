"""
Document lifecycle: create, update, cancel, delete and purchase order
conversion for every document type.

One service class serves all types; behaviour that differs per type comes
from the capability attributes declared on the model classes.
"""

from datetime import date
from typing import Optional, Type
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from app.common.errors import (
    DocumentLocked, DocumentMismatch, DocumentNotFound, InvalidDocument
)
from app.common.transaction import transaction_scope
from app.database.database import get_tenant_query
from app.dependencies.companyDependencies import ActingContext
from app.modules.contacts.models import Contact, ContactType
from app.modules.contacts.service import ContactService
from app.modules.documents.models import (
    CreditNote, DebitNote, Document, DocumentLineItem, DocumentSequence,
    DocumentWithholding, Invoice, PurchaseBill, PurchaseOrder
)
from app.modules.documents.schemas import DocumentCreate, DocumentUpdate, LineItemCreate
from app.modules.documents.status import DocumentStatus, EDITABLE, can_transition
from app.modules.ledger.service import LedgerService
from app.modules.notifications.service import DOCUMENT_CREATED, OutboxService, document_payload
from app.modules.payments.engine import PaymentDistributionEngine
from app.modules.taxes.calculator import DocumentCalculator
from app.modules.taxes.schemas import WithholdingEntry

logger = logging.getLogger(__name__)


class DocumentService:
    def __init__(self, db: Session, model: Type[Document]):
        self.db = db
        self.model = model
        self.calculator = DocumentCalculator(db)
        self.ledger = LedgerService(db)
        self.engine = PaymentDistributionEngine(db)
        self.outbox = OutboxService(db)

    @property
    def label(self) -> str:
        return self.model.__name__

    # ===== HELPERS =====

    def _resolve_role(self, data: DocumentCreate, contact: Contact, related: Optional[Document]) -> ContactType:
        roles = self.model.counterparty_roles
        if len(roles) == 1:
            role = roles[0]
        elif data.counterparty_role is not None:
            role = data.counterparty_role
        elif related is not None:
            role = related.counterparty_role
        else:
            role = ContactType.CLIENT if contact.is_client else ContactType.PROVIDER

        if role not in roles:
            raise InvalidDocument(f"A {self.label} cannot be issued to a {role.value}")
        if not contact.has_role(role):
            raise InvalidDocument(f"Contact '{contact.name}' is not a {role.value}", contact_id=contact.id)
        return role

    def _related_document(self, tenant_id: UUID, data: DocumentCreate) -> Optional[Document]:
        if data.related_document_id is None:
            return None
        if self.model not in (CreditNote, DebitNote):
            raise InvalidDocument(f"A {self.label} cannot reference another document")

        related = self.db.query(Document).filter(
            Document.id == data.related_document_id,
            Document.tenant_id == tenant_id,
            Document.deleted_at.is_(None)
        ).first()
        if not related:
            raise DocumentNotFound("Referenced document not found", document_id=data.related_document_id)
        allowed = (Invoice,) if self.model is CreditNote else (Invoice, PurchaseBill)
        if not isinstance(related, allowed):
            raise DocumentMismatch(f"A {self.label} cannot adjust a {related.document_type.value}")
        if related.contact_id != data.contact_id:
            raise DocumentMismatch(f"Document {related.number} belongs to another counterparty")
        return related

    def _next_number(self, tenant_id: UUID) -> str:
        """Next sequential number for this tenant and document type"""
        document_type = self.model.__mapper_args__["polymorphic_identity"]
        sequence = self.db.query(DocumentSequence).filter(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.document_type == document_type
        ).with_for_update().first()

        if not sequence:
            sequence = DocumentSequence(
                tenant_id=tenant_id,
                document_type=document_type,
                prefix=self.model.number_prefix,
                current_number=0
            )
            self.db.add(sequence)
            self.db.flush()

        sequence.current_number += 1
        return f"{sequence.prefix}{sequence.current_number:06d}"

    def _populate(self, document: Document, data: DocumentCreate, tenant_id: UUID, contact: Contact) -> None:
        """Recalculate everything from the request and replace items and withholding rows"""
        if data.withholding and not self.model.accepts_withholding:
            raise InvalidDocument(f"TDS/TCS cannot be applied to a {self.label}")

        place_of_supply = data.place_of_supply or contact.state
        calculated = self.calculator.calculate(
            tenant_id,
            data.items,
            place_of_supply=place_of_supply,
            reverse_charge=data.reverse_charge,
            cess_enabled=data.cess_enabled,
            add_discount_to_all=data.add_discount_to_all,
            shipping_amount=data.shipping_amount,
            shipping_tax_pct=data.shipping_tax_pct,
            withholding=data.withholding
        )
        totals = calculated.totals

        document.place_of_supply = place_of_supply
        document.is_inter_jurisdiction = calculated.is_inter_jurisdiction
        document.reverse_charge = data.reverse_charge
        document.cess_enabled = data.cess_enabled
        document.add_discount_to_all = data.add_discount_to_all
        document.subtotal = totals.subtotal
        document.discount_total = totals.discount_total
        document.taxable_amount = totals.taxable_amount
        document.cgst_amount = totals.cgst_amount
        document.sgst_amount = totals.sgst_amount
        document.igst_amount = totals.igst_amount
        document.cess_amount = totals.cess_amount
        document.shipping_amount = totals.shipping_amount
        document.shipping_tax_pct = data.shipping_tax_pct
        document.shipping_tax_amount = totals.shipping_tax_amount
        document.tds_total = totals.tds_total
        document.tcs_total = totals.tcs_total
        document.tax_total = totals.tax_total
        document.total_amount = totals.total_amount

        document.items = [
            DocumentLineItem(
                item_id=line.item.id,
                position=position,
                name=line.item.name,
                description=line.item.description,
                hsn_code=line.item.hsn_code,
                sac_code=line.item.sac_code,
                unit_id=line.item.unit_id,
                unit_name=line.item.unit.name if line.item.unit else None,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount_pct=line.discount_pct,
                tax_rate=line.tax_rate,
                cess_rate=line.cess_rate,
                discount_amount=line.amounts.discount_amount,
                taxable_amount=line.amounts.taxable_amount,
                cgst_amount=line.amounts.cgst_amount,
                sgst_amount=line.amounts.sgst_amount,
                igst_amount=line.amounts.igst_amount,
                cess_amount=line.amounts.cess_amount,
                tax_amount=line.amounts.tax_amount,
                total_amount=line.amounts.total_amount
            )
            for position, line in enumerate(calculated.lines)
        ]
        document.withholdings = [
            DocumentWithholding(
                kind=entry.kind,
                name=entry.name,
                percentage=entry.percentage,
                applies_to=entry.applies_to,
                amount=entry.amount
            )
            for entry in totals.withholdings
        ]

    def _build(self, data: DocumentCreate, ctx: ActingContext, related: Optional[Document] = None) -> Document:
        contact = ContactService(self.db).get_counterparty(ctx.tenant_id, data.contact_id)
        if related is None:
            related = self._related_document(ctx.tenant_id, data)
        role = self._resolve_role(data, contact, related)

        document = self.model(
            tenant_id=ctx.tenant_id,
            contact_id=contact.id,
            counterparty_role=role,
            number=self._next_number(ctx.tenant_id),
            status=DocumentStatus.OPEN,
            issue_date=data.issue_date or date.today(),
            due_date=data.due_date,
            valid_until=data.valid_until,
            related_document_id=related.id if related else None,
            reason=data.reason,
            notes=data.notes,
            terms=data.terms,
            created_by=ctx.user_id
        )
        document.contact = contact
        self._populate(document, data, ctx.tenant_id, contact)
        document.reset_balance()

        self.db.add(document)
        self.db.flush()
        self.ledger.record_document(document, ctx.user_id)
        return document

    def _query(self, tenant_id: UUID):
        return get_tenant_query(self.db, self.model, tenant_id)

    def _get_for_update(self, document_id: UUID, tenant_id: UUID) -> Document:
        document = self._query(tenant_id).filter(
            self.model.id == document_id
        ).with_for_update().populate_existing().first()
        if not document:
            raise DocumentNotFound(f"{self.label} not found", document_id=document_id)
        return document

    # ===== OPERATIONS =====

    def create_document(self, data: DocumentCreate, ctx: ActingContext) -> Document:
        with transaction_scope(self.db, f"{self.label} creation"):
            document = self._build(data, ctx)
            event = self.outbox.record(
                ctx.tenant_id, DOCUMENT_CREATED, "document", document.id,
                document_payload(self.db, document)
            )
        logger.info(f"{self.label} {document.number} created for tenant {ctx.tenant_id}: total {document.total_amount}")
        self.outbox.publish([event])
        return document

    def update_document(self, document_id: UUID, data: DocumentUpdate, ctx: ActingContext) -> Document:
        """
        Replace items and settings and recalculate. Only open documents can be
        edited; the new balance is the new total minus what is already paid.
        """
        with transaction_scope(self.db, f"{self.label} update"):
            document = self._get_for_update(document_id, ctx.tenant_id)
            if document.status not in EDITABLE:
                raise DocumentLocked(f"{self.label} {document.number} is {document.status_label} and cannot be edited")

            if data.contact_id != document.contact_id:
                self.engine.ensure_no_allocations(document)
            contact = ContactService(self.db).get_counterparty(ctx.tenant_id, data.contact_id)
            related = self._related_document(ctx.tenant_id, data) if data.related_document_id else None
            document.counterparty_role = self._resolve_role(data, contact, related)
            document.contact_id = contact.id
            document.contact = contact
            document.related_document_id = related.id if related else document.related_document_id

            allocated = document.allocated_amount
            if data.issue_date:
                document.issue_date = data.issue_date
            document.due_date = data.due_date
            document.valid_until = data.valid_until
            document.reason = data.reason
            document.notes = data.notes
            document.terms = data.terms
            document.updated_by = ctx.user_id

            self._populate(document, data, ctx.tenant_id, contact)
            if document.tracks_balance and document.total_amount < allocated:
                raise InvalidDocument(
                    f"New total {document.total_amount} is below the {allocated} already paid"
                )
            document.reset_balance(allocated)
            self.db.flush()

            self.ledger.remove_document(document)
            self.ledger.record_document(document, ctx.user_id)
        logger.info(f"{self.label} {document.number} updated: total {document.total_amount}")
        return document

    def cancel_document(self, document_id: UUID, ctx: ActingContext) -> Document:
        with transaction_scope(self.db, f"{self.label} cancellation"):
            document = self._get_for_update(document_id, ctx.tenant_id)
            self.engine.ensure_no_allocations(document)
            if not can_transition(document.status, DocumentStatus.CANCELLED):
                raise DocumentLocked(f"{self.label} {document.number} is {document.status_label} and cannot be cancelled")
            document.transition_to(DocumentStatus.CANCELLED)
            document.updated_by = ctx.user_id
            self.ledger.remove_document(document)
        logger.info(f"{self.label} {document.number} cancelled")
        return document

    def delete_document(self, document_id: UUID, ctx: ActingContext) -> dict:
        """Soft delete; refused while payments are linked to the document"""
        with transaction_scope(self.db, f"{self.label} deletion"):
            document = self._get_for_update(document_id, ctx.tenant_id)
            self.engine.ensure_no_allocations(document)
            if not can_transition(document.status, DocumentStatus.DELETED):
                raise DocumentLocked(f"{self.label} {document.number} is {document.status_label} and cannot be deleted")
            document.transition_to(DocumentStatus.DELETED)
            document.soft_delete()
            for item in document.items:
                item.deleted_at = document.deleted_at
            document.updated_by = ctx.user_id
            self.ledger.remove_document(document)
            number = document.number
        logger.info(f"{self.label} {number} deleted")
        return {"message": f"{self.label} {number} deleted", "id": str(document_id)}

    def convert_purchase_order(
        self,
        order_id: UUID,
        ctx: ActingContext,
        issue_date: Optional[date] = None,
        due_date: Optional[date] = None
    ) -> Document:
        """Turn an open purchase order into a purchase bill with the same lines"""
        if self.model is not PurchaseOrder:
            raise InvalidDocument(f"A {self.label} cannot be converted to a bill")

        with transaction_scope(self.db, "purchase order conversion"):
            order = self._get_for_update(order_id, ctx.tenant_id)
            if order.status != DocumentStatus.OPEN:
                raise DocumentLocked(f"Purchase order {order.number} is {order.status_label} and cannot be converted")

            bill_data = DocumentCreate(
                contact_id=order.contact_id,
                place_of_supply=order.place_of_supply,
                issue_date=issue_date,
                due_date=due_date,
                items=[
                    LineItemCreate(
                        item_id=item.item_id,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        discount_pct=item.discount_pct
                    )
                    for item in order.items
                ],
                shipping_amount=order.shipping_amount,
                shipping_tax_pct=order.shipping_tax_pct,
                cess_enabled=order.cess_enabled,
                reverse_charge=order.reverse_charge,
                add_discount_to_all=order.add_discount_to_all,
                withholding=[
                    WithholdingEntry(kind=w.kind, percentage=w.percentage, applies_to=w.applies_to, name=w.name)
                    for w in order.withholdings
                ],
                notes=order.notes,
                terms=order.terms
            )
            bill = DocumentService(self.db, PurchaseBill)._build(bill_data, ctx, related=order)
            order.transition_to(DocumentStatus.CONVERTED)
            order.updated_by = ctx.user_id
            event = self.outbox.record(
                ctx.tenant_id, DOCUMENT_CREATED, "document", bill.id, document_payload(self.db, bill)
            )
        logger.info(f"Purchase order {order.number} converted to bill {bill.number}")
        self.outbox.publish([event])
        return bill

    def get_document(self, document_id: UUID, tenant_id: UUID) -> Document:
        document = self._query(tenant_id).filter(self.model.id == document_id).first()
        if not document:
            raise DocumentNotFound(f"{self.label} not found", document_id=document_id)
        return document

    def list_documents(
        self,
        tenant_id: UUID,
        limit: int = 100,
        offset: int = 0,
        status: Optional[DocumentStatus] = None,
        contact_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> dict:
        query = self._query(tenant_id)
        if status:
            query = query.filter(self.model.status == status)
        if contact_id:
            query = query.filter(self.model.contact_id == contact_id)
        if date_from:
            query = query.filter(self.model.issue_date >= date_from)
        if date_to:
            query = query.filter(self.model.issue_date <= date_to)

        total = query.count()
        documents = query.order_by(
            self.model.issue_date.desc(), self.model.number.desc()
        ).offset(offset).limit(limit).all()
        return {"items": documents, "total": total, "limit": limit, "offset": offset}
