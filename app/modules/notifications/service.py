"""
Transactional outbox for billing notifications.

``record`` runs inside the business transaction; ``publish`` runs after the
commit and only hands event ids to Celery. A failure to enqueue never
affects the committed change: the event stays pending and the periodic
sweep picks it up.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.modules.company.models import Company
from app.modules.documents.models import Document
from app.modules.email.service import email_service
from app.modules.notifications.models import OutboxEvent, OutboxStatus

logger = logging.getLogger(__name__)

DOCUMENT_CREATED = "document.created"
PAYMENT_RECORDED = "payment.recorded"
PAYMENT_UPDATED = "payment.updated"
PAYMENT_DELETED = "payment.deleted"

# event type -> (template, subject format)
EVENT_TEMPLATES = {
    DOCUMENT_CREATED: ("document_issued.html", "{document_label} {number} from {company_name}"),
    PAYMENT_RECORDED: ("payment_receipt.html", "Payment {payment_no} received by {company_name}"),
    PAYMENT_UPDATED: ("payment_receipt.html", "Payment {payment_no} updated by {company_name}"),
    PAYMENT_DELETED: ("payment_receipt.html", "Payment {payment_no} cancelled by {company_name}"),
}


def _company_fields(db: Session, tenant_id: UUID) -> Dict[str, Any]:
    company = db.query(Company).filter(Company.id == tenant_id).first()
    return {
        "company_name": company.name if company else "",
        "reply_to": company.email if company else None,
    }


def document_payload(db: Session, document: Document) -> Dict[str, Any]:
    contact = document.contact
    return {
        "to": contact.email if contact else None,
        "contact_name": contact.name if contact else "",
        **_company_fields(db, document.tenant_id),
        "document_type": document.document_type.value,
        "document_label": document.document_type.value.replace("_", " ").title(),
        "number": document.number,
        "issue_date": document.issue_date.isoformat() if document.issue_date else None,
        "due_date": document.due_date.isoformat() if document.due_date else None,
        "taxable_amount": str(document.taxable_amount),
        "tax_total": str(document.tax_total),
        "total_amount": str(document.total_amount),
        "balance": str(document.balance) if document.balance is not None else None,
    }


def payment_payload(db: Session, payment, action: str) -> Dict[str, Any]:
    contact = payment.contact
    return {
        "to": contact.email if contact else None,
        "contact_name": contact.name if contact else "",
        **_company_fields(db, payment.tenant_id),
        "payment_no": payment.payment_no,
        "payment_type": payment.payment_type.value,
        "payment_date": payment.payment_date.isoformat() if payment.payment_date else None,
        "amount": str(payment.amount),
        "amount_in_excess": str(payment.amount_in_excess),
        "action": action,
        "allocations": [
            {
                "document_number": allocation.document_number,
                "value": str(allocation.value),
                "balance": str(allocation.document_balance) if allocation.document_balance is not None else "",
            }
            for allocation in payment.allocations
        ],
    }


class _SubjectFields(dict):
    def __missing__(self, key):
        return ""


class OutboxService:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        tenant_id: UUID,
        event_type: str,
        aggregate_type: str,
        aggregate_id: UUID,
        payload: Dict[str, Any]
    ) -> OutboxEvent:
        event = OutboxEvent(
            tenant_id=tenant_id,
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=payload,
            status=OutboxStatus.PENDING
        )
        self.db.add(event)
        self.db.flush()
        return event

    def publish(self, events: Iterable[Optional[OutboxEvent]]) -> int:
        """Enqueue delivery of committed events. Returns how many were enqueued."""
        event_ids = [str(event.id) for event in events if event is not None]
        if not event_ids:
            return 0
        if not settings.OUTBOX_DISPATCH_ENABLED:
            logger.debug(f"Outbox dispatch disabled; {len(event_ids)} events left pending")
            return 0

        from app.modules.notifications.tasks import dispatch_outbox_event

        enqueued = 0
        for event_id in event_ids:
            try:
                dispatch_outbox_event.delay(event_id)
                enqueued += 1
            except Exception as e:
                # Left pending for dispatch_pending_events
                logger.warning(f"Could not enqueue outbox event {event_id}: {str(e)}")
        return enqueued

    def pending_event_ids(self, limit: int = 100) -> List[UUID]:
        rows = self.db.query(OutboxEvent.id).filter(
            OutboxEvent.status.in_([OutboxStatus.PENDING, OutboxStatus.FAILED]),
            OutboxEvent.attempts < settings.OUTBOX_MAX_ATTEMPTS
        ).order_by(OutboxEvent.created_at).limit(limit).all()
        return [row.id for row in rows]

    def deliver(self, event_id: UUID) -> OutboxStatus:
        """Send the email for one event and record the outcome"""
        event = self.db.query(OutboxEvent).filter(OutboxEvent.id == event_id).with_for_update().first()
        if event is None:
            logger.warning(f"Outbox event {event_id} not found")
            return OutboxStatus.SKIPPED
        if event.status in (OutboxStatus.SENT, OutboxStatus.SKIPPED):
            return event.status

        payload = event.payload or {}
        template = EVENT_TEMPLATES.get(event.event_type)
        event.attempts += 1
        event.processed_at = datetime.now(timezone.utc)

        if template is None or not payload.get("to"):
            event.status = OutboxStatus.SKIPPED
            self.db.commit()
            logger.info(f"Outbox event {event.id} ({event.event_type}) skipped: no recipient")
            return event.status

        template_name, subject_format = template
        subject = subject_format.format_map(_SubjectFields(payload))
        try:
            sent = email_service.send_template_email(
                to_emails=[payload["to"]],
                subject=subject,
                template_name=template_name,
                context=payload,
                reply_to=payload.get("reply_to")
            )
            error = None if sent else "SMTP delivery failed"
        except Exception as e:
            sent, error = False, str(e)

        event.status = OutboxStatus.SENT if sent else OutboxStatus.FAILED
        event.last_error = error
        self.db.commit()
        if sent:
            logger.info(f"Outbox event {event.id} ({event.event_type}) delivered")
        else:
            logger.error(f"Outbox event {event.id} ({event.event_type}) failed: {error}")
        return event.status
