"""
Tests for the notification outbox: recording, publishing and delivery
"""

import pytest
import smtplib
from decimal import Decimal
from uuid import uuid4

from app.common.errors import ItemNotFound
from app.core.config import settings
from app.modules.documents.models import Invoice
from app.modules.documents.schemas import DocumentCreate, LineItemCreate
from app.modules.documents.service import DocumentService
from app.modules.email.service import email_service
from app.modules.notifications.models import OutboxEvent, OutboxStatus
from app.modules.notifications.service import (
    DOCUMENT_CREATED, PAYMENT_RECORDED, OutboxService
)
from app.modules.payments.models import PaymentType
from app.modules.payments.schemas import PaymentCreate
from app.modules.payments.service import PaymentService

D = Decimal


@pytest.fixture
def document_event(db_session, ctx, sample_client, sample_item):
    invoice = DocumentService(db_session, Invoice).create_document(DocumentCreate(
        contact_id=sample_client.id,
        items=[LineItemCreate(item_id=sample_item.id)]
    ), ctx)
    return db_session.query(OutboxEvent).filter(OutboxEvent.aggregate_id == invoice.id).one()


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(to_emails, subject, template_name, context, reply_to=None):
        sent.append({"to": to_emails, "subject": subject, "template": template_name,
                     "context": context, "reply_to": reply_to})
        return True

    monkeypatch.setattr(email_service, "send_template_email", fake_send)
    return sent


class TestRecord:
    def test_events_are_pending_after_commit(self, document_event):
        assert document_event.status == OutboxStatus.PENDING
        assert document_event.attempts == 0
        assert document_event.event_type == DOCUMENT_CREATED

    def test_payment_event_payload(self, db_session, ctx, sample_client):
        payment = PaymentService(db_session).create_payment(PaymentCreate(
            payment_type=PaymentType.PAYMENT_RECEIVED,
            contact_id=sample_client.id,
            payment_no="PR-9",
            amount=D("75.50")
        ), ctx)
        event = db_session.query(OutboxEvent).filter(OutboxEvent.aggregate_id == payment.id).one()
        assert event.event_type == PAYMENT_RECORDED
        assert event.payload["amount"] == "75.50"
        assert event.payload["company_name"] == "Acme Traders"
        assert event.payload["allocations"] == []

    def test_failed_transaction_records_nothing(self, db_session, ctx, sample_client):
        with pytest.raises(ItemNotFound):
            DocumentService(db_session, Invoice).create_document(DocumentCreate(
                contact_id=sample_client.id,
                items=[LineItemCreate(item_id=uuid4())]
            ), ctx)
        assert db_session.query(OutboxEvent).count() == 0


class TestPublish:
    def test_disabled_dispatch_enqueues_nothing(self, db_session, document_event):
        assert settings.OUTBOX_DISPATCH_ENABLED is False
        assert OutboxService(db_session).publish([document_event]) == 0

    def test_enqueues_event_ids(self, db_session, document_event, monkeypatch):
        queued = []

        class FakeTask:
            @staticmethod
            def delay(event_id):
                queued.append(event_id)

        monkeypatch.setattr(settings, "OUTBOX_DISPATCH_ENABLED", True)
        monkeypatch.setattr("app.modules.notifications.tasks.dispatch_outbox_event", FakeTask)

        assert OutboxService(db_session).publish([document_event, None]) == 1
        assert queued == [str(document_event.id)]

    def test_broker_failure_leaves_event_pending(self, db_session, document_event, monkeypatch):
        class BrokenTask:
            @staticmethod
            def delay(event_id):
                raise ConnectionError("broker unavailable")

        monkeypatch.setattr(settings, "OUTBOX_DISPATCH_ENABLED", True)
        monkeypatch.setattr("app.modules.notifications.tasks.dispatch_outbox_event", BrokenTask)

        assert OutboxService(db_session).publish([document_event]) == 0
        db_session.refresh(document_event)
        assert document_event.status == OutboxStatus.PENDING
        assert OutboxService(db_session).pending_event_ids() == [document_event.id]


class TestDeliver:
    def test_delivers_document_email(self, db_session, document_event, sent_emails):
        status = OutboxService(db_session).deliver(document_event.id)

        assert status == OutboxStatus.SENT
        assert sent_emails[0]["to"] == ["accounts@shree.test"]
        assert sent_emails[0]["template"] == "document_issued.html"
        assert sent_emails[0]["reply_to"] == "billing@acme.test"
        assert sent_emails[0]["subject"] == f"Invoice {document_event.payload['number']} from Acme Traders"
        db_session.refresh(document_event)
        assert document_event.attempts == 1
        assert document_event.processed_at is not None

    def test_sent_event_is_not_delivered_twice(self, db_session, document_event, sent_emails):
        service = OutboxService(db_session)
        service.deliver(document_event.id)
        assert service.deliver(document_event.id) == OutboxStatus.SENT
        assert len(sent_emails) == 1

    def test_skipped_without_recipient(self, db_session, ctx, sample_client, sample_item, sent_emails):
        sample_client.email = None
        db_session.commit()
        invoice = DocumentService(db_session, Invoice).create_document(DocumentCreate(
            contact_id=sample_client.id,
            items=[LineItemCreate(item_id=sample_item.id)]
        ), ctx)
        event = db_session.query(OutboxEvent).filter(OutboxEvent.aggregate_id == invoice.id).one()

        assert OutboxService(db_session).deliver(event.id) == OutboxStatus.SKIPPED
        assert sent_emails == []

    def test_smtp_failure_marks_failed(self, db_session, document_event, monkeypatch):
        monkeypatch.setattr(email_service, "send_template_email", lambda **kwargs: False)

        service = OutboxService(db_session)
        assert service.deliver(document_event.id) == OutboxStatus.FAILED
        db_session.refresh(document_event)
        assert document_event.last_error == "SMTP delivery failed"
        assert service.pending_event_ids() == [document_event.id]

    def test_gives_up_after_max_attempts(self, db_session, document_event, monkeypatch):
        monkeypatch.setattr(email_service, "send_template_email", lambda **kwargs: False)

        service = OutboxService(db_session)
        for _ in range(settings.OUTBOX_MAX_ATTEMPTS):
            service.deliver(document_event.id)
        assert service.pending_event_ids() == []

    def test_unknown_event(self, db_session):
        assert OutboxService(db_session).deliver(uuid4()) == OutboxStatus.SKIPPED


class TestTasks:
    def test_dispatch_task(self, db_session, document_event, sent_emails):
        from app.modules.notifications.tasks import dispatch_outbox_event

        result = dispatch_outbox_event(str(document_event.id))
        assert result == {"event_id": str(document_event.id), "status": "sent"}

    def test_sweep_redispatches_pending(self, db_session, document_event, monkeypatch):
        from app.modules.notifications import tasks

        queued = []

        class FakeTask:
            @staticmethod
            def delay(event_id):
                queued.append(event_id)

        monkeypatch.setattr(tasks, "dispatch_outbox_event", FakeTask)
        assert tasks.dispatch_pending_events() == {"dispatched": 1}
        assert queued == [str(document_event.id)]


class TestTemplates:
    def test_document_template_renders(self, document_event):
        html = email_service.render_template("document_issued.html", document_event.payload)
        assert document_event.payload["number"] in html
        assert "Acme Traders" in html

    def test_payment_template_renders(self):
        html = email_service.render_template("payment_receipt.html", {
            "payment_no": "PR-1",
            "contact_name": "Shree Textiles",
            "company_name": "Acme Traders",
            "amount": "400.00",
            "payment_date": "2024-04-15",
            "action": "recorded",
            "amount_in_excess": "0.00",
            "allocations": [{"document_number": "INV-000001", "value": "400.00", "balance": "600.00"}],
        })
        assert "INV-000001" in html
        assert "Unallocated" not in html


class TestEmailService:
    def test_message_headers(self):
        msg = email_service.build_message(
            ["accounts@shree.test"], "Invoice INV-000001", "<p>Total <b>118.00</b></p>",
            text_content="Total 118.00", reply_to="billing@acme.test", sender_name="Acme Traders"
        )
        assert msg["Reply-To"] == "billing@acme.test"
        assert "Acme Traders" in msg["From"]
        plain, html = msg.get_payload()
        assert plain.get_content_type() == "text/plain"
        assert plain.get_payload(decode=True).decode() == "Total 118.00"
        assert html.get_content_type() == "text/html"

    def test_html_only_message(self):
        msg = email_service.build_message(["accounts@shree.test"], "Subject", "<p>Hi</p>")
        assert [part.get_content_type() for part in msg.get_payload()] == ["text/html"]

    def test_text_companion_template(self, document_event):
        text = email_service.render_text_template("document_issued.html", document_event.payload)
        assert document_event.payload["number"] in text
        assert "<" not in text
        assert email_service.render_text_template("missing.html", {}) is None

    def test_template_email_sends_both_parts(self, monkeypatch, document_event):
        sent = {}

        def fake_send(**kwargs):
            sent.update(kwargs)
            return True

        monkeypatch.setattr(email_service, "send_email", fake_send)
        assert email_service.send_template_email(
            ["accounts@shree.test"], "Invoice", "document_issued.html", document_event.payload
        ) is True
        assert "<html>" in sent["html_content"]
        assert "Total:" in sent["text_content"]
        assert sent["sender_name"] == "Acme Traders"

    def test_smtp_error_returns_false(self, monkeypatch):
        def broken_connect():
            raise smtplib.SMTPServerDisconnected("connection lost")

        monkeypatch.setattr(email_service, "_connect", broken_connect)
        assert email_service.send_email(["accounts@shree.test"], "Subject", "<p>Hi</p>") is False
