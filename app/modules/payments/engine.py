"""
Payment distribution engine.

Applies a payment across one or more documents and reverses it exactly.
Runs inside the caller's transaction and never commits; any error leaves
the rollback to the caller's transaction scope.

Lock order is always: target documents by ascending id, then the payment.
"""

from decimal import Decimal
from typing import Dict, Iterable, List
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.common.errors import (
    DocumentLocked, DocumentMismatch, HasLinkedPayments, OverAllocation, OverPayment
)
from app.common.validators import ZERO, money
from app.modules.documents.models import Document
from app.modules.documents.status import ALLOCATION_LOCKED
from app.modules.payments.models import Payment, PaymentAllocation

logger = logging.getLogger(__name__)


class PaymentDistributionEngine:
    def __init__(self, db: Session):
        self.db = db

    # ===== LOCKING =====

    def lock_documents(self, tenant_id: UUID, document_ids: Iterable[UUID]) -> Dict[UUID, Document]:
        ids = sorted(set(document_ids), key=str)
        if not ids:
            return {}
        documents = self.db.query(Document).filter(
            Document.id.in_(ids),
            Document.tenant_id == tenant_id
        ).order_by(Document.id).with_for_update().populate_existing().all()
        return {doc.id: doc for doc in documents}

    def lock_payment(self, payment: Payment) -> None:
        if payment.id is None:
            return
        self.db.query(Payment).filter(Payment.id == payment.id).with_for_update().first()

    def lock_for_change(self, payment: Payment, new_document_ids: Iterable[UUID] = ()) -> Dict[UUID, Document]:
        """
        Before editing or deleting a payment: lock the documents it is
        allocated to together with any new targets, then the payment itself.
        """
        current = [
            row.document_id for row in self.db.query(PaymentAllocation.document_id).filter(
                PaymentAllocation.payment_id == payment.id
            )
        ]
        documents = self.lock_documents(payment.tenant_id, set(current) | set(new_document_ids))
        self.lock_payment(payment)
        return documents

    # ===== CHECKS =====

    @staticmethod
    def validate_total(amount: Decimal, allocations) -> Decimal:
        """Sum of allocation values; must not exceed the payment amount"""
        used = sum((money(a.value) for a in allocations), ZERO)
        if used > money(amount):
            raise OverAllocation(
                f"Allocations total {used} exceeds the payment amount {money(amount)}",
                allocated=used, amount=money(amount)
            )
        return used

    def _outstanding(self, document: Document) -> Decimal:
        """Balance for invoices and bills; for orders, the total less advances already linked"""
        if document.tracks_balance:
            return money(document.balance)
        linked = self.db.query(func.coalesce(func.sum(PaymentAllocation.value), 0)).filter(
            PaymentAllocation.document_id == document.id
        ).scalar()
        return money(document.total_amount) - money(linked)

    def _check_target(self, payment: Payment, document: Document, allocation) -> None:
        if document is None or document.is_deleted:
            raise DocumentMismatch("Document not found for this company", document_id=allocation.document_id)
        if document.document_type != allocation.document_type:
            raise DocumentMismatch(
                f"Document {document.number} is a {document.document_type.value}, "
                f"not a {allocation.document_type.value}"
            )
        if document.contact_id != payment.contact_id:
            raise DocumentMismatch(f"Document {document.number} belongs to another counterparty")
        if document.payment_direction is None or document.payment_direction != payment.direction:
            raise DocumentMismatch(
                f"A {payment.payment_type.value} payment cannot be applied to "
                f"{document.document_type.value} {document.number}"
            )
        if document.status in ALLOCATION_LOCKED:
            raise DocumentLocked(
                f"Document {document.number} is {document.status_label} and accepts no payments"
            )
        outstanding = self._outstanding(document)
        if money(allocation.value) > outstanding:
            raise OverPayment(
                f"Allocation {money(allocation.value)} exceeds the {outstanding} outstanding on "
                f"document {document.number}",
                document_id=document.id
            )

    # ===== OPERATIONS =====

    def apply(self, payment: Payment, allocations: List) -> List[PaymentAllocation]:
        """
        Apply ``allocations`` (document_id, document_type, value) to their
        documents. Either every allocation is applied or none is.
        """
        used = self.validate_total(payment.amount, allocations)
        seen = set()
        for allocation in allocations:
            if money(allocation.value) <= 0:
                raise OverAllocation("Allocation values must be greater than zero")
            if allocation.document_id in seen:
                raise DocumentMismatch(f"Document {allocation.document_id} is allocated twice")
            seen.add(allocation.document_id)

        documents = self.lock_documents(payment.tenant_id, seen)
        self.lock_payment(payment)

        for allocation in allocations:
            self._check_target(payment, documents.get(allocation.document_id), allocation)

        rows = []
        for allocation in allocations:
            document = documents[allocation.document_id]
            document.apply_allocation(money(allocation.value))
            row = PaymentAllocation(
                document=document,
                document_id=document.id,
                document_type=document.document_type,
                value=money(allocation.value)
            )
            payment.allocations.append(row)
            rows.append(row)

        payment.amount_used_for_allocations = used
        payment.amount_in_excess = money(payment.amount) - used
        self.db.flush()
        logger.debug(f"Applied {len(rows)} allocations of payment {payment.payment_no} ({used})")
        return rows

    def reverse(self, payment: Payment) -> int:
        """Give every allocation of ``payment`` back to its document and drop the rows"""
        rows = self.db.query(PaymentAllocation).filter(
            PaymentAllocation.payment_id == payment.id
        ).all()
        if rows:
            documents = self.lock_documents(payment.tenant_id, [row.document_id for row in rows])
            self.lock_payment(payment)
            for row in rows:
                document = documents.get(row.document_id)
                if document is not None:
                    document.restore_allocation(money(row.value))
                self.db.delete(row)

        payment.amount_used_for_allocations = ZERO
        payment.amount_in_excess = money(payment.amount)
        self.db.flush()
        self.db.expire(payment, ["allocations"])
        logger.debug(f"Reversed {len(rows)} allocations of payment {payment.payment_no}")
        return len(rows)

    def ensure_no_allocations(self, document: Document) -> None:
        linked = self.db.query(func.count(PaymentAllocation.id)).filter(
            PaymentAllocation.document_id == document.id
        ).scalar()
        if linked:
            raise HasLinkedPayments(
                f"Document {document.number} has {linked} linked payment(s); remove them first",
                document_id=document.id
            )
