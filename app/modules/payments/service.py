"""
Payment lifecycle: record, edit and delete payments and keep the documents
they settle and the client ledger consistent with them.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.common.errors import DuplicatePayment, PaymentNotFound
from app.common.transaction import transaction_scope
from app.common.validators import ZERO, money
from app.database.database import get_tenant_query
from app.dependencies.companyDependencies import ActingContext
from app.modules.contacts.models import Contact, ContactType
from app.modules.contacts.service import ContactService
from app.modules.documents.models import Document, Invoice, PurchaseBill
from app.modules.documents.status import UNSETTLED
from app.modules.ledger.models import LedgerReferenceType
from app.modules.ledger.service import LedgerService
from app.modules.notifications.service import (
    PAYMENT_DELETED, PAYMENT_RECORDED, PAYMENT_UPDATED, OutboxService, payment_payload
)
from app.modules.payments.engine import PaymentDistributionEngine
from app.modules.payments.models import RECEIVED_TYPES, Payment, PaymentAllocation, PaymentType
from app.modules.payments.schemas import PaymentCreate, PaymentUpdate

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, db: Session):
        self.db = db
        self.engine = PaymentDistributionEngine(db)
        self.ledger = LedgerService(db)
        self.outbox = OutboxService(db)

    # ===== HELPERS =====

    def _ensure_unique_number(self, tenant_id: UUID, payment_no: str, exclude_id: Optional[UUID] = None) -> None:
        query = self.db.query(Payment.id).filter(
            Payment.tenant_id == tenant_id,
            Payment.payment_no == payment_no,
            Payment.deleted_at.is_(None)
        )
        if exclude_id is not None:
            query = query.filter(Payment.id != exclude_id)
        if query.first():
            raise DuplicatePayment(f"Payment number {payment_no} already exists", payment_no=payment_no)

    def _counterparty(self, tenant_id: UUID, contact_id: UUID, payment_type: PaymentType) -> Contact:
        role = ContactType.CLIENT if payment_type.direction == "received" else ContactType.PROVIDER
        return ContactService(self.db).get_counterparty(tenant_id, contact_id, role=role)

    def _query(self, tenant_id: UUID):
        return get_tenant_query(self.db, Payment, tenant_id)

    # ===== OPERATIONS =====

    def create_payment(self, data: PaymentCreate, ctx: ActingContext) -> Payment:
        with transaction_scope(self.db, "payment creation"):
            self.engine.validate_total(data.amount, data.allocations)
            self._ensure_unique_number(ctx.tenant_id, data.payment_no)
            contact = self._counterparty(ctx.tenant_id, data.contact_id, data.payment_type)

            payment = Payment(
                tenant_id=ctx.tenant_id,
                payment_no=data.payment_no,
                payment_type=data.payment_type,
                contact_id=contact.id,
                amount=data.amount,
                payment_date=data.payment_date or date.today(),
                method=data.method,
                reference_no=data.reference_no,
                bank_charges=data.bank_charges,
                memo=data.memo,
                amount_used_for_allocations=0,
                amount_in_excess=data.amount,
                created_by=ctx.user_id
            )
            payment.contact = contact
            self.db.add(payment)
            self.db.flush()

            self.engine.apply(payment, data.allocations)
            self.ledger.record_payment(payment, ctx.user_id)
            event = self.outbox.record(
                ctx.tenant_id, PAYMENT_RECORDED, "payment", payment.id,
                payment_payload(self.db, payment, "recorded")
            )
        logger.info(
            f"Payment {payment.payment_no} recorded for tenant {ctx.tenant_id}: "
            f"{payment.amount} ({payment.amount_used_for_allocations} allocated)"
        )
        self.outbox.publish([event])
        return payment

    def update_payment(self, payment_id: UUID, data: PaymentUpdate, ctx: ActingContext) -> Payment:
        """
        Reverse every existing allocation, then apply the new set, all in one
        transaction. A failure at any step leaves the old state untouched.
        """
        with transaction_scope(self.db, "payment update"):
            self.engine.validate_total(data.amount, data.allocations)
            payment = self.get_payment(payment_id, ctx.tenant_id)
            if data.payment_no != payment.payment_no:
                self._ensure_unique_number(ctx.tenant_id, data.payment_no, exclude_id=payment.id)
            contact = self._counterparty(ctx.tenant_id, data.contact_id, data.payment_type)

            self.engine.lock_for_change(payment, [a.document_id for a in data.allocations])
            self.engine.reverse(payment)

            payment.payment_no = data.payment_no
            payment.payment_type = data.payment_type
            payment.contact_id = contact.id
            payment.contact = contact
            payment.amount = data.amount
            payment.payment_date = data.payment_date or payment.payment_date
            payment.method = data.method
            payment.reference_no = data.reference_no
            payment.bank_charges = data.bank_charges
            payment.memo = data.memo
            payment.updated_by = ctx.user_id
            self.db.flush()

            self.engine.apply(payment, data.allocations)
            self.ledger.remove_by_reference(ctx.tenant_id, LedgerReferenceType.PAYMENT, payment.id)
            self.ledger.record_payment(payment, ctx.user_id)
            event = self.outbox.record(
                ctx.tenant_id, PAYMENT_UPDATED, "payment", payment.id,
                payment_payload(self.db, payment, "updated")
            )
        logger.info(f"Payment {payment.payment_no} updated: {payment.amount}")
        self.outbox.publish([event])
        return payment

    def delete_payment(self, payment_id: UUID, ctx: ActingContext) -> dict:
        """Give all allocated amounts back to their documents and soft delete"""
        with transaction_scope(self.db, "payment deletion"):
            payment = self.get_payment(payment_id, ctx.tenant_id)
            self.engine.lock_for_change(payment)
            payload = payment_payload(self.db, payment, "cancelled")

            self.engine.reverse(payment)
            self.ledger.remove_by_reference(ctx.tenant_id, LedgerReferenceType.PAYMENT, payment.id)
            payment.soft_delete()
            payment.updated_by = ctx.user_id
            event = self.outbox.record(ctx.tenant_id, PAYMENT_DELETED, "payment", payment.id, payload)
            payment_no = payment.payment_no
        logger.info(f"Payment {payment_no} deleted")
        self.outbox.publish([event])
        return {"message": f"Payment {payment_no} deleted", "id": str(payment_id)}

    def get_payment(self, payment_id: UUID, tenant_id: UUID) -> Payment:
        payment = self._query(tenant_id).filter(Payment.id == payment_id).first()
        if not payment:
            raise PaymentNotFound("Payment not found", payment_id=payment_id)
        return payment

    def list_payments(
        self,
        tenant_id: UUID,
        limit: int = 100,
        offset: int = 0,
        payment_type: Optional[PaymentType] = None,
        contact_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> dict:
        query = self._query(tenant_id)
        if payment_type:
            query = query.filter(Payment.payment_type == payment_type)
        if contact_id:
            query = query.filter(Payment.contact_id == contact_id)
        if date_from:
            query = query.filter(Payment.payment_date >= date_from)
        if date_to:
            query = query.filter(Payment.payment_date <= date_to)

        total = query.count()
        payments = query.order_by(
            Payment.payment_date.desc(), Payment.created_at.desc()
        ).offset(offset).limit(limit).all()
        return {"items": payments, "total": total, "limit": limit, "offset": offset}

    def unpaid_documents(self, tenant_id: UUID, contact_id: UUID) -> List[Document]:
        """
        Documents a payment for this contact could settle: unpaid or partly
        paid invoices when it is a client, open or partly paid bills when it
        is a provider.
        """
        contact = ContactService(self.db).get_counterparty(tenant_id, contact_id, active_only=False)
        models = []
        if contact.is_client:
            models.append(Invoice)
        if contact.is_provider:
            models.append(PurchaseBill)

        documents = []
        for model in models:
            documents.extend(self.db.query(model).filter(
                model.tenant_id == tenant_id,
                model.contact_id == contact_id,
                model.deleted_at.is_(None),
                model.status.in_(UNSETTLED),
                model.balance > 0
            ).order_by(model.issue_date, model.number).all())
        return documents

    def document_payments(self, document: Document) -> dict:
        """Payments applied to ``document``, oldest first"""
        rows = self.db.query(PaymentAllocation, Payment).join(
            Payment, PaymentAllocation.payment_id == Payment.id
        ).filter(
            PaymentAllocation.document_id == document.id,
            Payment.tenant_id == document.tenant_id,
            Payment.deleted_at.is_(None)
        ).order_by(Payment.payment_date, Payment.created_at).all()

        payments = [
            {
                "payment_id": payment.id,
                "payment_no": payment.payment_no,
                "payment_type": payment.payment_type,
                "payment_date": payment.payment_date,
                "method": payment.method,
                "reference_no": payment.reference_no,
                "value": money(allocation.value)
            }
            for allocation, payment in rows
        ]
        return {
            "document_id": document.id,
            "document_type": document.document_type,
            "number": document.number,
            "total_amount": document.total_amount,
            "balance": document.balance,
            "status": document.status,
            "amount_paid": sum((p["value"] for p in payments), ZERO),
            "payments": payments
        }

    def statistics(
        self,
        tenant_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> dict:
        """Money received, money paid out and the difference between them"""
        query = self.db.query(
            Payment.payment_type,
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.amount), 0)
        ).filter(
            Payment.tenant_id == tenant_id,
            Payment.deleted_at.is_(None)
        )
        if date_from:
            query = query.filter(Payment.payment_date >= date_from)
        if date_to:
            query = query.filter(Payment.payment_date <= date_to)

        received = paid = ZERO
        received_count = paid_count = 0
        for payment_type, count, total in query.group_by(Payment.payment_type).all():
            if payment_type in RECEIVED_TYPES:
                received += money(total)
                received_count += count
            else:
                paid += money(total)
                paid_count += count

        return {
            "total_received": received,
            "total_paid": paid,
            "net_cash_flow": received - paid,
            "received_count": received_count,
            "paid_count": paid_count
        }
