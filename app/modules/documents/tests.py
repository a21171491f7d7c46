"""
Tests for the document lifecycle: numbering, tax context, editing rules,
cancellation, deletion and purchase order conversion
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from app.common.errors import (
    CounterpartyNotFound, DocumentLocked, DocumentMismatch, DocumentNotFound,
    HasLinkedPayments, InvalidDocument
)
from app.modules.documents.models import (
    CreditNote, DebitNote, DocumentType, Invoice, PurchaseBill, PurchaseOrder
)
from app.modules.documents.schemas import DocumentCreate, DocumentUpdate, LineItemCreate
from app.modules.documents.service import DocumentService
from app.modules.documents.status import DocumentStatus
from app.modules.ledger.service import LedgerService
from app.modules.notifications.models import OutboxEvent
from app.modules.payments.models import PaymentType
from app.modules.payments.schemas import AllocationCreate, PaymentCreate
from app.modules.payments.service import PaymentService
from app.modules.taxes.schemas import WithholdingBase, WithholdingEntry, WithholdingKind

D = Decimal


def _data(contact, item, quantity="1", **kwargs):
    return DocumentCreate(
        contact_id=contact.id,
        items=[LineItemCreate(item_id=item.id, quantity=D(quantity))],
        **kwargs
    )


# ===== CREATION =====

class TestCreateDocument:
    def test_invoice_totals_and_balance(self, db_session, ctx, sample_client, priced_item):
        invoice = DocumentService(db_session, Invoice).create_document(_data(sample_client, priced_item), ctx)

        assert invoice.number == "INV-000001"
        assert invoice.document_type == DocumentType.INVOICE
        assert invoice.place_of_supply == "Gujarat"
        assert invoice.is_inter_jurisdiction is False
        assert invoice.taxable_amount == D("847.46")
        assert invoice.cgst_amount == D("76.27")
        assert invoice.sgst_amount == D("76.27")
        assert invoice.total_amount == D("1000.00")
        assert invoice.balance == D("1000.00")
        assert invoice.status == DocumentStatus.OPEN
        assert invoice.status_label == "Unpaid"
        assert invoice.created_by == ctx.user_id

    def test_line_items_snapshot_catalog(self, db_session, ctx, sample_client, sample_item):
        invoice = DocumentService(db_session, Invoice).create_document(
            _data(sample_client, sample_item, quantity="3"), ctx
        )
        sample_item.name = "Renamed"
        sample_item.unit_price = D("999")
        db_session.commit()

        line = invoice.items[0]
        assert line.name == "Cotton fabric"
        assert line.hsn_code == "5208"
        assert line.unit_name == "Piece"
        assert line.unit_price == D("100.00")
        assert line.total_amount == D("354.00")

    def test_numbers_are_sequential_per_type(self, db_session, ctx, sample_client, sample_vendor, sample_item):
        invoices = DocumentService(db_session, Invoice)
        first = invoices.create_document(_data(sample_client, sample_item), ctx)
        second = invoices.create_document(_data(sample_client, sample_item), ctx)
        order = DocumentService(db_session, PurchaseOrder).create_document(_data(sample_vendor, sample_item), ctx)

        assert first.number == "INV-000001"
        assert second.number == "INV-000002"
        assert order.number == "PO-000001"

    def test_inter_state_bill_with_tds(self, db_session, ctx, sample_vendor, sample_item):
        data = _data(
            sample_vendor, sample_item,
            withholding=[WithholdingEntry(kind=WithholdingKind.TDS, percentage=D("10"),
                                          applies_to=WithholdingBase.TAXABLE, name="194C")]
        )
        bill = DocumentService(db_session, PurchaseBill).create_document(data, ctx)

        assert bill.is_inter_jurisdiction is True
        assert bill.igst_amount == D("18.00")
        assert bill.tds_total == D("10.00")
        assert bill.total_amount == D("108.00")
        assert bill.balance == D("108.00")
        assert bill.withholdings[0].amount == D("10.00")

    def test_explicit_place_of_supply(self, db_session, ctx, sample_client, sample_item):
        invoice = DocumentService(db_session, Invoice).create_document(
            _data(sample_client, sample_item, place_of_supply="MH (27)"), ctx
        )
        assert invoice.is_inter_jurisdiction is True
        assert invoice.igst_amount == D("18.00")

    def test_withholding_rejected_on_invoice(self, db_session, ctx, sample_client, sample_item):
        data = _data(sample_client, sample_item,
                     withholding=[WithholdingEntry(kind=WithholdingKind.TCS, percentage=D("1"))])
        with pytest.raises(InvalidDocument):
            DocumentService(db_session, Invoice).create_document(data, ctx)
        assert db_session.query(Invoice).count() == 0

    def test_invoice_needs_a_client(self, db_session, ctx, sample_vendor, sample_item):
        with pytest.raises(InvalidDocument):
            DocumentService(db_session, Invoice).create_document(_data(sample_vendor, sample_item), ctx)

    def test_unknown_contact(self, db_session, ctx, sample_item):
        data = DocumentCreate(contact_id=uuid4(), items=[LineItemCreate(item_id=sample_item.id)])
        with pytest.raises(CounterpartyNotFound):
            DocumentService(db_session, Invoice).create_document(data, ctx)

    def test_purchase_order_has_no_balance(self, db_session, ctx, sample_vendor, sample_item):
        order = DocumentService(db_session, PurchaseOrder).create_document(
            _data(sample_vendor, sample_item, valid_until=date(2030, 1, 31)), ctx
        )
        assert order.balance is None
        assert order.valid_until == date(2030, 1, 31)

    def test_records_outbox_event(self, db_session, ctx, sample_client, sample_item):
        invoice = DocumentService(db_session, Invoice).create_document(_data(sample_client, sample_item), ctx)
        event = db_session.query(OutboxEvent).filter(OutboxEvent.aggregate_id == invoice.id).one()
        assert event.event_type == "document.created"
        assert event.payload["to"] == "accounts@shree.test"
        assert event.payload["number"] == invoice.number


# ===== NOTES =====

class TestNotes:
    def test_credit_note_credits_client_ledger(self, db_session, ctx, sample_client, priced_item):
        invoice = DocumentService(db_session, Invoice).create_document(_data(sample_client, priced_item), ctx)
        note = DocumentService(db_session, CreditNote).create_document(
            _data(sample_client, priced_item, related_document_id=invoice.id, reason="Goods returned"), ctx
        )

        assert note.number == "CN-000001"
        assert note.related_document_id == invoice.id
        assert note.balance is None
        balance = LedgerService(db_session).current_balance(ctx.tenant_id, sample_client.id)
        assert balance.balance == D("0.00")

    def test_debit_note_for_provider_skips_ledger(self, db_session, ctx, sample_vendor, sample_item):
        from app.modules.contacts.models import ContactType

        note = DocumentService(db_session, DebitNote).create_document(
            _data(sample_vendor, sample_item, counterparty_role=ContactType.PROVIDER), ctx
        )
        assert note.counterparty_role == ContactType.PROVIDER
        statement = LedgerService(db_session).running_balance(ctx.tenant_id, sample_vendor.id)
        assert statement.entries == []

    def test_debit_note_role_inferred_from_contact(self, db_session, ctx, sample_client, sample_item):
        from app.modules.contacts.models import ContactType

        note = DocumentService(db_session, DebitNote).create_document(_data(sample_client, sample_item), ctx)
        assert note.counterparty_role == ContactType.CLIENT
        balance = LedgerService(db_session).current_balance(ctx.tenant_id, sample_client.id)
        assert balance.balance == D("118.00")

    def test_credit_note_must_reference_same_contact(self, db_session, ctx, sample_company, sample_client, sample_item):
        from app.modules.contacts.models import Contact

        other = Contact(tenant_id=sample_company.id, name="Other client", type=["client"], state="Gujarat")
        db_session.add(other)
        db_session.commit()
        invoice = DocumentService(db_session, Invoice).create_document(_data(other, sample_item), ctx)

        with pytest.raises(DocumentMismatch):
            DocumentService(db_session, CreditNote).create_document(
                _data(sample_client, sample_item, related_document_id=invoice.id), ctx
            )

    def test_invoice_cannot_reference_document(self, db_session, ctx, sample_client, sample_item):
        invoice = DocumentService(db_session, Invoice).create_document(_data(sample_client, sample_item), ctx)
        with pytest.raises(InvalidDocument):
            DocumentService(db_session, Invoice).create_document(
                _data(sample_client, sample_item, related_document_id=invoice.id), ctx
            )


# ===== UPDATE / CANCEL / DELETE =====

class TestDocumentLifecycle:
    def _pay(self, db_session, ctx, contact, document, value, payment_type=PaymentType.PAYMENT_RECEIVED):
        return PaymentService(db_session).create_payment(PaymentCreate(
            payment_type=payment_type,
            contact_id=contact.id,
            payment_no=f"PAY-{uuid4().hex[:8]}",
            amount=D(value),
            allocations=[AllocationCreate(document_id=document.id, document_type=document.document_type,
                                          value=D(value))]
        ), ctx)

    def test_update_recalculates(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        invoice = service.create_document(_data(sample_client, sample_item), ctx)

        updated = service.update_document(
            invoice.id, DocumentUpdate(**_data(sample_client, sample_item, quantity="2").model_dump()), ctx
        )
        assert updated.number == invoice.number
        assert updated.total_amount == D("236.00")
        assert updated.balance == D("236.00")
        assert len(updated.items) == 1
        balance = LedgerService(db_session).current_balance(ctx.tenant_id, sample_client.id)
        assert balance.balance == D("236.00")

    def test_update_refused_once_paid(self, db_session, ctx, sample_client, priced_item):
        service = DocumentService(db_session, Invoice)
        invoice = service.create_document(_data(sample_client, priced_item), ctx)
        self._pay(db_session, ctx, sample_client, invoice, "400")

        with pytest.raises(DocumentLocked):
            service.update_document(
                invoice.id, DocumentUpdate(**_data(sample_client, priced_item, quantity="2").model_dump()), ctx
            )
        db_session.refresh(invoice)
        assert invoice.total_amount == D("1000.00")
        assert invoice.balance == D("600.00")

    def test_cancel(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        invoice = service.create_document(_data(sample_client, sample_item), ctx)

        cancelled = service.cancel_document(invoice.id, ctx)
        assert cancelled.status == DocumentStatus.CANCELLED
        balance = LedgerService(db_session).current_balance(ctx.tenant_id, sample_client.id)
        assert balance.balance == D("0.00")

        with pytest.raises(DocumentLocked):
            service.update_document(
                invoice.id, DocumentUpdate(**_data(sample_client, sample_item).model_dump()), ctx
            )

    def test_cancel_refused_with_payments(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        invoice = service.create_document(_data(sample_client, sample_item), ctx)
        self._pay(db_session, ctx, sample_client, invoice, "50")

        with pytest.raises(HasLinkedPayments):
            service.cancel_document(invoice.id, ctx)

    def test_delete(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        invoice = service.create_document(_data(sample_client, sample_item), ctx)

        result = service.delete_document(invoice.id, ctx)
        assert result["id"] == str(invoice.id)
        with pytest.raises(DocumentNotFound):
            service.get_document(invoice.id, ctx.tenant_id)
        assert service.list_documents(ctx.tenant_id)["total"] == 0

    def test_delete_refused_with_payments(self, db_session, ctx, sample_vendor, sample_item):
        service = DocumentService(db_session, PurchaseBill)
        bill = service.create_document(_data(sample_vendor, sample_item), ctx)
        self._pay(db_session, ctx, sample_vendor, bill, "118", payment_type=PaymentType.PAYMENT_MADE)

        with pytest.raises(HasLinkedPayments):
            service.delete_document(bill.id, ctx)
        db_session.refresh(bill)
        assert bill.status == DocumentStatus.PAID
        assert bill.status_label == "Closed"

    def test_zero_total_invoice_stays_open(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        free = DocumentCreate(
            contact_id=sample_client.id,
            items=[LineItemCreate(item_id=sample_item.id, unit_price=D("0"))]
        )
        invoice = service.create_document(free, ctx)
        assert invoice.total_amount == D("0.00")
        assert invoice.balance == D("0.00")
        assert invoice.status == DocumentStatus.OPEN
        assert PaymentService(db_session).unpaid_documents(ctx.tenant_id, sample_client.id) == []

        updated = service.update_document(
            invoice.id, DocumentUpdate(**_data(sample_client, sample_item).model_dump()), ctx
        )
        assert updated.total_amount == D("118.00")
        assert updated.status == DocumentStatus.OPEN

    def test_zero_total_documents_can_be_cancelled_and_deleted(self, db_session, ctx, sample_vendor, sample_item):
        service = DocumentService(db_session, PurchaseBill)
        free = DocumentCreate(
            contact_id=sample_vendor.id,
            items=[LineItemCreate(item_id=sample_item.id, discount_pct=D("100"))]
        )
        first = service.create_document(free, ctx)
        second = service.create_document(free, ctx)

        assert service.cancel_document(first.id, ctx).status == DocumentStatus.CANCELLED
        service.delete_document(second.id, ctx)
        with pytest.raises(DocumentNotFound):
            service.get_document(second.id, ctx.tenant_id)

    def test_other_tenant_cannot_see_document(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        invoice = service.create_document(_data(sample_client, sample_item), ctx)
        with pytest.raises(DocumentNotFound):
            service.get_document(invoice.id, uuid4())

    def test_list_filters(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        service.create_document(_data(sample_client, sample_item, issue_date=date(2024, 1, 10)), ctx)
        service.create_document(_data(sample_client, sample_item, issue_date=date(2024, 3, 10)), ctx)

        result = service.list_documents(ctx.tenant_id, date_from=date(2024, 2, 1))
        assert result["total"] == 1
        assert result["items"][0].issue_date == date(2024, 3, 10)
        assert service.list_documents(ctx.tenant_id, status=DocumentStatus.PAID)["total"] == 0


# ===== PURCHASE ORDER CONVERSION =====

class TestConvertPurchaseOrder:
    def test_convert_to_bill(self, db_session, ctx, sample_vendor, sample_item):
        orders = DocumentService(db_session, PurchaseOrder)
        order = orders.create_document(_data(sample_vendor, sample_item, quantity="2"), ctx)

        bill = orders.convert_purchase_order(order.id, ctx, due_date=date(2030, 6, 30))
        assert isinstance(bill, PurchaseBill)
        assert bill.number == "BILL-000001"
        assert bill.related_document_id == order.id
        assert bill.total_amount == order.total_amount == D("236.00")
        assert bill.balance == D("236.00")
        assert bill.due_date == date(2030, 6, 30)
        assert [line.quantity for line in bill.items] == [D("2")]

        db_session.refresh(order)
        assert order.status == DocumentStatus.CONVERTED

    def test_converted_order_cannot_convert_again(self, db_session, ctx, sample_vendor, sample_item):
        orders = DocumentService(db_session, PurchaseOrder)
        order = orders.create_document(_data(sample_vendor, sample_item), ctx)
        orders.convert_purchase_order(order.id, ctx)

        with pytest.raises(DocumentLocked):
            orders.convert_purchase_order(order.id, ctx)

    def test_order_with_advance_can_convert(self, db_session, ctx, sample_vendor, sample_item):
        orders = DocumentService(db_session, PurchaseOrder)
        order = orders.create_document(_data(sample_vendor, sample_item), ctx)
        PaymentService(db_session).create_payment(PaymentCreate(
            payment_type=PaymentType.ADVANCE_PAYMENT_MADE,
            contact_id=sample_vendor.id,
            payment_no="ADV-1",
            amount=D("50"),
            allocations=[AllocationCreate(document_id=order.id, document_type=DocumentType.PURCHASE_ORDER,
                                          value=D("50"))]
        ), ctx)

        bill = orders.convert_purchase_order(order.id, ctx)
        assert bill.balance == D("118.00")

    def test_only_orders_convert(self, db_session, ctx, sample_client, sample_item):
        service = DocumentService(db_session, Invoice)
        invoice = service.create_document(_data(sample_client, sample_item), ctx)
        with pytest.raises(InvalidDocument):
            service.convert_purchase_order(invoice.id, ctx)


# ===== API =====

class TestDocumentAPI:
    def test_create_and_get_invoice(self, api_client, headers, sample_client, priced_item):
        response = api_client.post("/invoices/", headers=headers, json={
            "contact_id": str(sample_client.id),
            "items": [{"item_id": str(priced_item.id), "quantity": "1"}]
        })
        assert response.status_code == 201
        body = response.json()
        assert body["number"] == "INV-000001"
        assert body["status_label"] == "Unpaid"
        assert D(body["total_amount"]) == D("1000.00")
        assert len(body["items"]) == 1

        response = api_client.get(f"/invoices/{body['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["number"] == "INV-000001"

    def test_unknown_item_returns_404(self, api_client, headers, sample_client, sample_item):
        response = api_client.post("/invoices/", headers=headers, json={
            "contact_id": str(sample_client.id),
            "items": [{"item_id": str(uuid4())}]
        })
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "item_not_found"

    def test_empty_items_rejected(self, api_client, headers, sample_client):
        response = api_client.post("/invoices/", headers=headers, json={
            "contact_id": str(sample_client.id),
            "items": []
        })
        assert response.status_code == 422

    def test_missing_company_header(self, api_client, sample_client):
        response = api_client.get("/invoices/")
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "missing_tenant"

    def test_invalid_user_header(self, api_client, headers):
        response = api_client.get("/invoices/", headers={**headers, "X-User-ID": "not-a-uuid"})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_user"

    def test_created_by_from_user_header(self, api_client, headers, ctx, sample_client, sample_item, db_session):
        created = api_client.post("/invoices/", headers=headers, json={
            "contact_id": str(sample_client.id),
            "items": [{"item_id": str(sample_item.id)}]
        }).json()
        invoice = db_session.get(Invoice, UUID(created["id"]))
        assert invoice.created_by == ctx.user_id

    def test_convert_endpoint(self, api_client, headers, sample_vendor, sample_item):
        created = api_client.post("/purchase-orders/", headers=headers, json={
            "contact_id": str(sample_vendor.id),
            "items": [{"item_id": str(sample_item.id), "quantity": "1"}]
        }).json()

        response = api_client.post(f"/purchase-orders/{created['id']}/convert-to-bill", headers=headers)
        assert response.status_code == 201
        assert response.json()["document_type"] == "purchase_bill"
        assert response.json()["related_document_id"] == created["id"]

    def test_cancel_and_delete_endpoints(self, api_client, headers, sample_client, sample_item):
        created = api_client.post("/invoices/", headers=headers, json={
            "contact_id": str(sample_client.id),
            "items": [{"item_id": str(sample_item.id)}]
        }).json()

        response = api_client.post(f"/invoices/{created['id']}/cancel", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = api_client.delete(f"/invoices/{created['id']}", headers=headers)
        assert response.status_code == 200
        assert api_client.get(f"/invoices/{created['id']}", headers=headers).status_code == 404
