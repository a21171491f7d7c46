"""
Ledger accumulator.

Entries are only ever inserted or removed as a whole (compensating deletion
keyed by reference type and id); balances are always recomputed from the
log rather than stored.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.common.validators import ZERO, money
from app.dependencies.companyDependencies import ActingContext
from app.modules.contacts.models import Contact, ContactType
from app.modules.contacts.service import ContactService
from app.modules.documents.models import Document, DocumentType
from app.modules.ledger.models import LedgerEntry, LedgerReferenceType
from app.modules.ledger.schemas import (
    BalanceStatus, ContactBalance, ContactBalanceList, LedgerLine, LedgerStatement, LedgerSummary
)

logger = logging.getLogger(__name__)

DOCUMENT_REFERENCES = {
    DocumentType.INVOICE: LedgerReferenceType.INVOICE,
    DocumentType.CREDIT_NOTE: LedgerReferenceType.CREDIT_NOTE,
    DocumentType.DEBIT_NOTE: LedgerReferenceType.DEBIT_NOTE,
}


def balance_status(balance: Decimal) -> BalanceStatus:
    if balance > 0:
        return BalanceStatus.RECEIVABLE
    if balance < 0:
        return BalanceStatus.ADVANCE
    return BalanceStatus.SETTLED


class LedgerService:
    def __init__(self, db: Session):
        self.db = db

    # ===== WRITES =====

    def append(
        self,
        tenant_id: UUID,
        contact_id: UUID,
        reference_type: LedgerReferenceType,
        transaction_date: date,
        debit: Decimal = ZERO,
        credit: Decimal = ZERO,
        reference_id: Optional[UUID] = None,
        document_number: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[UUID] = None
    ) -> LedgerEntry:
        debit, credit = money(debit), money(credit)
        if debit < 0 or credit < 0:
            raise ValueError("Ledger amounts cannot be negative")
        if (debit > 0) == (credit > 0):
            raise ValueError("A ledger entry needs exactly one of debit or credit")

        entry = LedgerEntry(
            tenant_id=tenant_id,
            contact_id=contact_id,
            reference_type=reference_type,
            reference_id=reference_id,
            document_number=document_number,
            description=description,
            transaction_date=transaction_date,
            debit=debit,
            credit=credit,
            created_by=created_by
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def set_opening_balance(
        self,
        ctx: ActingContext,
        contact_id: UUID,
        amount: Decimal,
        as_of: Optional[date] = None
    ) -> Optional[LedgerEntry]:
        """Replace the contact's opening entry. Zero leaves no entry."""
        amount = money(amount)
        self.db.query(LedgerEntry).filter(
            LedgerEntry.tenant_id == ctx.tenant_id,
            LedgerEntry.contact_id == contact_id,
            LedgerEntry.reference_type == LedgerReferenceType.OPENING_BALANCE
        ).delete(synchronize_session=False)

        if amount == 0:
            return None
        return self.append(
            ctx.tenant_id, contact_id, LedgerReferenceType.OPENING_BALANCE,
            transaction_date=as_of or date.today(),
            debit=amount if amount > 0 else ZERO,
            credit=-amount if amount < 0 else ZERO,
            description="Opening balance",
            created_by=ctx.user_id
        )

    def record_document(self, document: Document, created_by: Optional[UUID] = None) -> Optional[LedgerEntry]:
        """
        Client-side documents move the client balance: invoices and debit
        notes debit it, credit notes credit it. Purchase-side documents
        and zero totals leave no entry.
        """
        reference_type = DOCUMENT_REFERENCES.get(document.document_type)
        if reference_type is None or document.counterparty_role != ContactType.CLIENT:
            return None
        amount = money(document.total_amount)
        if amount == 0:
            return None

        label = document.document_type.value.replace("_", " ").title()
        is_credit = reference_type == LedgerReferenceType.CREDIT_NOTE
        return self.append(
            document.tenant_id, document.contact_id, reference_type,
            transaction_date=document.issue_date,
            debit=ZERO if is_credit else amount,
            credit=amount if is_credit else ZERO,
            reference_id=document.id,
            document_number=document.number,
            description=f"{label} {document.number}",
            created_by=created_by
        )

    def record_payment(self, payment, created_by: Optional[UUID] = None) -> Optional[LedgerEntry]:
        """Money received from a client credits its ledger"""
        if not payment.credits_client_ledger or money(payment.amount) == 0:
            return None
        return self.append(
            payment.tenant_id, payment.contact_id, LedgerReferenceType.PAYMENT,
            transaction_date=payment.payment_date,
            credit=payment.amount,
            reference_id=payment.id,
            document_number=payment.payment_no,
            description=f"Payment received {payment.payment_no}",
            created_by=created_by
        )

    def remove_by_reference(self, tenant_id: UUID, reference_type: LedgerReferenceType, reference_id: UUID) -> int:
        removed = self.db.query(LedgerEntry).filter(
            LedgerEntry.tenant_id == tenant_id,
            LedgerEntry.reference_type == reference_type,
            LedgerEntry.reference_id == reference_id
        ).delete(synchronize_session=False)
        if removed:
            logger.debug(f"Removed {removed} ledger entries for {reference_type.value} {reference_id}")
        return removed

    def remove_document(self, document: Document) -> int:
        reference_type = DOCUMENT_REFERENCES.get(document.document_type)
        if reference_type is None:
            return 0
        return self.remove_by_reference(document.tenant_id, reference_type, document.id)

    # ===== READS =====

    def _entries(self, tenant_id: UUID, contact_id: UUID):
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.tenant_id == tenant_id,
            LedgerEntry.contact_id == contact_id
        )

    def running_balance(
        self,
        tenant_id: UUID,
        contact_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> LedgerStatement:
        """
        Ledger lines ordered by (transaction date, insertion order) with the
        cumulative debit minus credit after each line. Entries before
        ``date_from`` are folded into the opening balance so the running
        figure of every returned line is the true cumulative balance.
        """
        ContactService(self.db).get_counterparty(tenant_id, contact_id, active_only=False)

        query = self._entries(tenant_id, contact_id)
        if date_to is not None:
            query = query.filter(LedgerEntry.transaction_date <= date_to)
        entries = query.order_by(LedgerEntry.transaction_date, LedgerEntry.id).all()

        opening = ZERO
        running = ZERO
        lines = []
        for entry in entries:
            running += money(entry.debit) - money(entry.credit)
            if date_from is not None and entry.transaction_date < date_from:
                opening = running
                continue
            lines.append(LedgerLine(
                id=entry.id,
                transaction_date=entry.transaction_date,
                reference_type=entry.reference_type,
                reference_id=entry.reference_id,
                document_number=entry.document_number,
                description=entry.description,
                debit=money(entry.debit),
                credit=money(entry.credit),
                running_balance=running
            ))

        page = lines[offset:offset + limit] if limit is not None else lines[offset:]
        return LedgerStatement(
            contact_id=contact_id,
            date_from=date_from,
            date_to=date_to,
            opening_balance=opening,
            closing_balance=running,
            total=len(lines),
            limit=limit,
            offset=offset,
            entries=page
        )

    def _totals(self, tenant_id: UUID, contact_id: UUID):
        debit, credit, count = self.db.query(
            func.coalesce(func.sum(LedgerEntry.debit), 0),
            func.coalesce(func.sum(LedgerEntry.credit), 0),
            func.count(LedgerEntry.id)
        ).filter(
            LedgerEntry.tenant_id == tenant_id,
            LedgerEntry.contact_id == contact_id
        ).one()
        return money(debit), money(credit), count

    def current_balance(self, tenant_id: UUID, contact_id: UUID) -> ContactBalance:
        contact = ContactService(self.db).get_counterparty(tenant_id, contact_id, active_only=False)
        debit, credit, _ = self._totals(tenant_id, contact_id)
        balance = debit - credit
        return ContactBalance(
            contact_id=contact_id,
            contact_name=contact.name,
            balance=balance,
            status=balance_status(balance)
        )

    def summary(self, tenant_id: UUID, contact_id: UUID) -> LedgerSummary:
        contact = ContactService(self.db).get_counterparty(tenant_id, contact_id, active_only=False)
        debit, credit, count = self._totals(tenant_id, contact_id)
        balance = debit - credit
        return LedgerSummary(
            contact_id=contact_id,
            contact_name=contact.name,
            balance=balance,
            status=balance_status(balance),
            total_debit=debit,
            total_credit=credit,
            entry_count=count
        )

    def balances(self, tenant_id: UUID, include_zero: bool = False) -> ContactBalanceList:
        """Balance of every client of the tenant, largest first"""
        balance_expr = func.coalesce(func.sum(LedgerEntry.debit - LedgerEntry.credit), 0)
        query = self.db.query(Contact, balance_expr.label("balance")).outerjoin(
            LedgerEntry,
            (LedgerEntry.contact_id == Contact.id) & (LedgerEntry.tenant_id == tenant_id)
        ).filter(
            Contact.tenant_id == tenant_id,
            Contact.deleted_at.is_(None)
        ).group_by(Contact.id)

        rows = []
        for contact, balance in query.all():
            balance = money(balance)
            # Role lives in a JSON list, so it is checked here rather than in SQL
            if not contact.is_client or (balance == 0 and not include_zero):
                continue
            rows.append(ContactBalance(
                contact_id=contact.id,
                contact_name=contact.name,
                balance=balance,
                status=balance_status(balance)
            ))
        rows.sort(key=lambda r: r.balance, reverse=True)
        return ContactBalanceList(items=rows, total=len(rows))
