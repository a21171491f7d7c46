"""
Tests for payment recording, allocation across documents and reversal
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from app.common.errors import (
    CounterpartyNotFound, DocumentLocked, DocumentMismatch, DuplicatePayment,
    InvalidDocument, OverAllocation, OverPayment, PaymentNotFound
)
from app.modules.documents.models import DocumentType, Invoice, PurchaseBill, PurchaseOrder
from app.modules.documents.schemas import DocumentCreate, LineItemCreate
from app.modules.documents.service import DocumentService
from app.modules.documents.status import DocumentStatus
from app.modules.ledger.service import LedgerService
from app.modules.payments.engine import PaymentDistributionEngine
from app.modules.payments.models import Payment, PaymentAllocation, PaymentMethod, PaymentType
from app.modules.payments.schemas import AllocationCreate, PaymentCreate, PaymentUpdate
from app.modules.payments.service import PaymentService

D = Decimal


@pytest.fixture
def invoice(db_session, ctx, sample_client, priced_item):
    """Unpaid invoice totalling exactly 1000.00"""
    return DocumentService(db_session, Invoice).create_document(DocumentCreate(
        contact_id=sample_client.id,
        items=[LineItemCreate(item_id=priced_item.id, quantity=D("1"))]
    ), ctx)


@pytest.fixture
def second_invoice(db_session, ctx, sample_client, sample_item):
    """Unpaid invoice totalling 118.00"""
    return DocumentService(db_session, Invoice).create_document(DocumentCreate(
        contact_id=sample_client.id,
        items=[LineItemCreate(item_id=sample_item.id, quantity=D("1"))]
    ), ctx)


@pytest.fixture
def bill(db_session, ctx, sample_vendor, sample_item):
    """Open purchase bill totalling 118.00"""
    return DocumentService(db_session, PurchaseBill).create_document(DocumentCreate(
        contact_id=sample_vendor.id,
        items=[LineItemCreate(item_id=sample_item.id, quantity=D("1"))]
    ), ctx)


def _payment(contact, amount, allocations=(), payment_no=None, payment_type=PaymentType.PAYMENT_RECEIVED):
    return PaymentCreate(
        payment_type=payment_type,
        contact_id=contact.id,
        payment_no=payment_no or f"PR-{uuid4().hex[:8]}",
        amount=D(amount),
        method=PaymentMethod.BANK_TRANSFER,
        allocations=[
            AllocationCreate(document_id=document.id, document_type=document.document_type, value=D(value))
            for document, value in allocations
        ]
    )


# ===== RECORDING =====

class TestCreatePayment:
    def test_partial_then_full_payment(self, db_session, ctx, sample_client, invoice):
        service = PaymentService(db_session)

        first = service.create_payment(_payment(sample_client, "400", [(invoice, "400")]), ctx)
        db_session.refresh(invoice)
        assert invoice.balance == D("600.00")
        assert invoice.status == DocumentStatus.PARTIALLY_PAID
        assert invoice.status_label == "Partially Paid"
        assert first.amount_used_for_allocations == D("400.00")
        assert first.amount_in_excess == D("0.00")

        service.create_payment(_payment(sample_client, "600", [(invoice, "600")]), ctx)
        db_session.refresh(invoice)
        assert invoice.balance == D("0.00")
        assert invoice.status == DocumentStatus.PAID

    def test_unallocated_amount_is_an_advance(self, db_session, ctx, sample_client, invoice):
        payment = PaymentService(db_session).create_payment(
            _payment(sample_client, "1500", [(invoice, "1000")]), ctx
        )
        assert payment.amount_used_for_allocations == D("1000.00")
        assert payment.amount_in_excess == D("500.00")

    def test_payment_without_allocations(self, db_session, ctx, sample_client):
        payment = PaymentService(db_session).create_payment(
            _payment(sample_client, "250", payment_type=PaymentType.ADVANCE_PAYMENT_RECEIVED), ctx
        )
        assert payment.allocations == []
        assert payment.amount_in_excess == D("250.00")
        balance = LedgerService(db_session).current_balance(ctx.tenant_id, sample_client.id)
        assert balance.balance == D("-250.00")

    def test_spread_over_two_invoices(self, db_session, ctx, sample_client, invoice, second_invoice):
        payment = PaymentService(db_session).create_payment(
            _payment(sample_client, "618", [(invoice, "500"), (second_invoice, "118")]), ctx
        )
        db_session.refresh(invoice)
        db_session.refresh(second_invoice)
        assert invoice.balance == D("500.00")
        assert second_invoice.status == DocumentStatus.PAID
        assert len(payment.allocations) == 2
        assert {a.document_number for a in payment.allocations} == {invoice.number, second_invoice.number}

    def test_over_allocation_changes_nothing(self, db_session, ctx, sample_client, invoice):
        with pytest.raises(OverAllocation):
            PaymentService(db_session).create_payment(_payment(sample_client, "500", [(invoice, "600")]), ctx)

        db_session.refresh(invoice)
        assert invoice.balance == D("1000.00")
        assert db_session.query(Payment).count() == 0

    def test_over_payment_is_all_or_nothing(self, db_session, ctx, sample_client, invoice, second_invoice):
        with pytest.raises(OverPayment):
            PaymentService(db_session).create_payment(
                _payment(sample_client, "700", [(invoice, "500"), (second_invoice, "200")]), ctx
            )

        db_session.refresh(invoice)
        db_session.refresh(second_invoice)
        assert invoice.balance == D("1000.00")
        assert second_invoice.balance == D("118.00")
        assert db_session.query(PaymentAllocation).count() == 0

    def test_paid_document_accepts_no_payment(self, db_session, ctx, sample_client, second_invoice):
        service = PaymentService(db_session)
        service.create_payment(_payment(sample_client, "118", [(second_invoice, "118")]), ctx)

        with pytest.raises(DocumentLocked):
            service.create_payment(_payment(sample_client, "1", [(second_invoice, "1")]), ctx)

    def test_wrong_document_type(self, db_session, ctx, sample_client, invoice):
        data = _payment(sample_client, "100")
        data.allocations = [AllocationCreate(document_id=invoice.id, document_type=DocumentType.PURCHASE_BILL,
                                             value=D("100"))]
        with pytest.raises(DocumentMismatch):
            PaymentService(db_session).create_payment(data, ctx)

    def test_wrong_direction(self, db_session, ctx, sample_vendor, bill):
        data = _payment(sample_vendor, "100", [(bill, "100")], payment_type=PaymentType.PAYMENT_RECEIVED)
        # A received payment needs a client counterparty
        with pytest.raises(InvalidDocument):
            PaymentService(db_session).create_payment(data, ctx)

    def test_document_of_other_contact(self, db_session, ctx, sample_company, invoice):
        from app.modules.contacts.models import Contact

        other = Contact(tenant_id=sample_company.id, name="Other", type=["client"], state="Gujarat")
        db_session.add(other)
        db_session.commit()

        with pytest.raises(DocumentMismatch):
            PaymentService(db_session).create_payment(_payment(other, "100", [(invoice, "100")]), ctx)

    def test_unknown_document(self, db_session, ctx, sample_client):
        data = _payment(sample_client, "100")
        data.allocations = [AllocationCreate(document_id=uuid4(), document_type=DocumentType.INVOICE,
                                             value=D("100"))]
        with pytest.raises(DocumentMismatch):
            PaymentService(db_session).create_payment(data, ctx)

    def test_duplicate_number(self, db_session, ctx, sample_client):
        service = PaymentService(db_session)
        service.create_payment(_payment(sample_client, "10", payment_no="PR-0001"), ctx)
        with pytest.raises(DuplicatePayment):
            service.create_payment(_payment(sample_client, "10", payment_no="PR-0001"), ctx)

    def test_unknown_contact(self, db_session, ctx, sample_client):
        data = _payment(sample_client, "10")
        data.contact_id = uuid4()
        with pytest.raises(CounterpartyNotFound):
            PaymentService(db_session).create_payment(data, ctx)

    def test_bill_payment_leaves_client_ledger_alone(self, db_session, ctx, sample_vendor, bill):
        PaymentService(db_session).create_payment(
            _payment(sample_vendor, "118", [(bill, "118")], payment_type=PaymentType.PAYMENT_MADE), ctx
        )
        db_session.refresh(bill)
        assert bill.status == DocumentStatus.PAID
        statement = LedgerService(db_session).running_balance(ctx.tenant_id, sample_vendor.id)
        assert statement.entries == []


class TestPaymentSchemas:
    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            PaymentCreate(payment_type=PaymentType.PAYMENT_RECEIVED, contact_id=uuid4(),
                          payment_no="X", amount=D("0"))

    def test_amount_precision(self):
        with pytest.raises(ValueError):
            PaymentCreate(payment_type=PaymentType.PAYMENT_RECEIVED, contact_id=uuid4(),
                          payment_no="X", amount=D("10.001"))

    def test_document_listed_twice(self):
        document_id = uuid4()
        allocation = {"document_id": document_id, "document_type": "invoice", "value": "5"}
        with pytest.raises(ValueError):
            PaymentCreate(payment_type=PaymentType.PAYMENT_RECEIVED, contact_id=uuid4(),
                          payment_no="X", amount=D("10"), allocations=[allocation, allocation])


# ===== EDIT / DELETE =====

class TestChangePayment:
    def test_delete_restores_balance(self, db_session, ctx, sample_client, invoice):
        service = PaymentService(db_session)
        service.create_payment(_payment(sample_client, "400", [(invoice, "400")]), ctx)
        second = service.create_payment(_payment(sample_client, "600", [(invoice, "600")]), ctx)

        result = service.delete_payment(second.id, ctx)
        assert "deleted" in result["message"]
        db_session.refresh(invoice)
        assert invoice.balance == D("600.00")
        assert invoice.status == DocumentStatus.PARTIALLY_PAID
        with pytest.raises(PaymentNotFound):
            service.get_payment(second.id, ctx.tenant_id)

        balance = LedgerService(db_session).current_balance(ctx.tenant_id, sample_client.id)
        assert balance.balance == D("600.00")

    def test_delete_only_payment_reopens_document(self, db_session, ctx, sample_client, invoice):
        service = PaymentService(db_session)
        payment = service.create_payment(_payment(sample_client, "1000", [(invoice, "1000")]), ctx)
        service.delete_payment(payment.id, ctx)

        db_session.refresh(invoice)
        assert invoice.balance == D("1000.00")
        assert invoice.status == DocumentStatus.OPEN
        assert db_session.query(PaymentAllocation).count() == 0

    def test_update_reapplies_allocations(self, db_session, ctx, sample_client, invoice, second_invoice):
        service = PaymentService(db_session)
        payment = service.create_payment(
            _payment(sample_client, "400", [(invoice, "400")], payment_no="PR-1"), ctx
        )

        updated = service.update_payment(payment.id, PaymentUpdate(
            **_payment(sample_client, "500", [(invoice, "300"), (second_invoice, "118")],
                       payment_no="PR-1").model_dump()
        ), ctx)

        db_session.refresh(invoice)
        db_session.refresh(second_invoice)
        assert invoice.balance == D("700.00")
        assert second_invoice.status == DocumentStatus.PAID
        assert updated.amount_used_for_allocations == D("418.00")
        assert updated.amount_in_excess == D("82.00")
        assert len(updated.allocations) == 2

        statement = LedgerService(db_session).running_balance(ctx.tenant_id, sample_client.id)
        assert [e.credit for e in statement.entries if e.credit] == [D("500.00")]

    def test_failed_update_keeps_previous_state(self, db_session, ctx, sample_client, invoice):
        service = PaymentService(db_session)
        payment = service.create_payment(
            _payment(sample_client, "400", [(invoice, "400")], payment_no="PR-1"), ctx
        )

        with pytest.raises(OverPayment):
            service.update_payment(payment.id, PaymentUpdate(
                **_payment(sample_client, "2000", [(invoice, "1500")], payment_no="PR-1").model_dump()
            ), ctx)

        db_session.refresh(invoice)
        db_session.refresh(payment)
        assert invoice.balance == D("600.00")
        assert payment.amount == D("400.00")
        assert len(payment.allocations) == 1

    def test_update_can_use_amount_it_freed(self, db_session, ctx, sample_client, invoice):
        service = PaymentService(db_session)
        payment = service.create_payment(
            _payment(sample_client, "1000", [(invoice, "1000")], payment_no="PR-1"), ctx
        )
        service.update_payment(payment.id, PaymentUpdate(
            **_payment(sample_client, "900", [(invoice, "900")], payment_no="PR-1").model_dump()
        ), ctx)

        db_session.refresh(invoice)
        assert invoice.balance == D("100.00")
        assert invoice.status == DocumentStatus.PARTIALLY_PAID

    def test_update_to_taken_number(self, db_session, ctx, sample_client):
        service = PaymentService(db_session)
        service.create_payment(_payment(sample_client, "10", payment_no="PR-1"), ctx)
        payment = service.create_payment(_payment(sample_client, "10", payment_no="PR-2"), ctx)

        with pytest.raises(DuplicatePayment):
            service.update_payment(payment.id, PaymentUpdate(
                **_payment(sample_client, "10", payment_no="PR-1").model_dump()
            ), ctx)


class TestEngine:
    def test_validate_total(self):
        allocations = [AllocationCreate(document_id=uuid4(), document_type=DocumentType.INVOICE, value=D("60")),
                       AllocationCreate(document_id=uuid4(), document_type=DocumentType.INVOICE, value=D("40"))]
        assert PaymentDistributionEngine.validate_total(D("100"), allocations) == D("100.00")
        with pytest.raises(OverAllocation):
            PaymentDistributionEngine.validate_total(D("99.99"), allocations)


# ===== QUERIES / API =====

class TestPaymentQueries:
    def test_unpaid_documents(self, db_session, ctx, sample_client, invoice, second_invoice):
        service = PaymentService(db_session)
        service.create_payment(_payment(sample_client, "118", [(second_invoice, "118")]), ctx)
        service.create_payment(_payment(sample_client, "100", [(invoice, "100")]), ctx)

        unpaid = service.unpaid_documents(ctx.tenant_id, sample_client.id)
        assert [d.id for d in unpaid] == [invoice.id]

    def test_unpaid_bills_for_provider(self, db_session, ctx, sample_vendor, bill):
        unpaid = PaymentService(db_session).unpaid_documents(ctx.tenant_id, sample_vendor.id)
        assert [d.id for d in unpaid] == [bill.id]

    def test_list_payments(self, db_session, ctx, sample_client, sample_vendor):
        service = PaymentService(db_session)
        service.create_payment(_payment(sample_client, "10"), ctx)
        service.create_payment(_payment(sample_vendor, "20", payment_type=PaymentType.ADVANCE_PAYMENT_MADE), ctx)

        assert service.list_payments(ctx.tenant_id)["total"] == 2
        made = service.list_payments(ctx.tenant_id, payment_type=PaymentType.ADVANCE_PAYMENT_MADE)
        assert made["total"] == 1
        assert made["items"][0].amount == D("20.00")

    def test_payment_api(self, api_client, headers, sample_client, invoice):
        response = api_client.post("/payments/", headers=headers, json={
            "payment_type": "payment_received",
            "contact_id": str(sample_client.id),
            "payment_no": "PR-API-1",
            "amount": "400.00",
            "method": "upi",
            "allocations": [{"document_id": str(invoice.id), "document_type": "invoice", "value": "400.00"}]
        })
        assert response.status_code == 201
        body = response.json()
        assert body["allocations"][0]["document_number"] == invoice.number
        assert D(body["allocations"][0]["document_balance"]) == D("600.00")
        assert body["allocations"][0]["document_status"] == "partially_paid"

        response = api_client.get(f"/payments/unpaid-documents?contact_id={sample_client.id}", headers=headers)
        assert response.status_code == 200
        assert D(response.json()[0]["balance"]) == D("600.00")

        response = api_client.delete(f"/payments/{body['id']}", headers=headers)
        assert response.status_code == 200
        assert api_client.get(f"/payments/{body['id']}", headers=headers).status_code == 404

    def test_over_allocation_api(self, api_client, headers, sample_client, invoice):
        response = api_client.post("/payments/", headers=headers, json={
            "payment_type": "payment_received",
            "contact_id": str(sample_client.id),
            "payment_no": "PR-API-2",
            "amount": "500.00",
            "allocations": [{"document_id": str(invoice.id), "document_type": "invoice", "value": "600.00"}]
        })
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "over_allocation"


# ===== HISTORY / STATISTICS =====

class TestPaymentHistory:
    def test_document_payments(self, db_session, ctx, sample_client, invoice, second_invoice):
        service = PaymentService(db_session)
        first = service.create_payment(
            _payment(sample_client, "400", [(invoice, "400")], payment_no="PR-1").model_copy(
                update={"payment_date": date(2024, 4, 1)}
            ), ctx
        )
        service.create_payment(
            _payment(sample_client, "318", [(invoice, "200"), (second_invoice, "118")], payment_no="PR-2").model_copy(
                update={"payment_date": date(2024, 4, 15)}
            ), ctx
        )

        history = service.document_payments(invoice)
        assert [p["payment_no"] for p in history["payments"]] == ["PR-1", "PR-2"]
        assert [p["value"] for p in history["payments"]] == [D("400.00"), D("200.00")]
        assert history["payments"][0]["method"] == PaymentMethod.BANK_TRANSFER
        assert history["amount_paid"] == D("600.00")
        assert history["balance"] == D("400.00")

        service.delete_payment(first.id, ctx)
        history = service.document_payments(invoice)
        assert [p["payment_no"] for p in history["payments"]] == ["PR-2"]
        assert history["amount_paid"] == D("200.00")

    def test_document_payments_api(self, api_client, headers, db_session, ctx, sample_client, invoice):
        PaymentService(db_session).create_payment(
            _payment(sample_client, "250", [(invoice, "250")], payment_no="PR-H1"), ctx
        )

        response = api_client.get(f"/invoices/{invoice.id}/payments", headers=headers)
        assert response.status_code == 200
        body = response.json()
        assert body["number"] == invoice.number
        assert D(body["amount_paid"]) == D("250.00")
        assert D(body["balance"]) == D("750.00")
        assert body["payments"][0]["payment_no"] == "PR-H1"
        assert body["payments"][0]["method"] == "bank_transfer"

        assert api_client.get(f"/purchase-bills/{invoice.id}/payments", headers=headers).status_code == 404
        assert api_client.get(f"/credit-notes/{invoice.id}/payments", headers=headers).status_code == 404

    def test_statistics(self, db_session, ctx, sample_client, sample_vendor, invoice, bill):
        service = PaymentService(db_session)
        service.create_payment(_payment(sample_client, "400", [(invoice, "400")]), ctx)
        service.create_payment(
            _payment(sample_client, "100", payment_type=PaymentType.ADVANCE_PAYMENT_RECEIVED), ctx
        )
        service.create_payment(
            _payment(sample_vendor, "118", [(bill, "118")], payment_type=PaymentType.PAYMENT_MADE), ctx
        )
        removed = service.create_payment(_payment(sample_client, "50"), ctx)
        service.delete_payment(removed.id, ctx)

        stats = service.statistics(ctx.tenant_id)
        assert stats["total_received"] == D("500.00")
        assert stats["total_paid"] == D("118.00")
        assert stats["net_cash_flow"] == D("382.00")
        assert stats["received_count"] == 2
        assert stats["paid_count"] == 1

    def test_statistics_api(self, api_client, headers, db_session, ctx, sample_client):
        PaymentService(db_session).create_payment(_payment(sample_client, "75"), ctx)

        response = api_client.get("/payments/statistics", headers=headers)
        assert response.status_code == 200
        body = response.json()
        assert D(body["total_received"]) == D("75.00")
        assert D(body["total_paid"]) == D("0")
        assert D(body["net_cash_flow"]) == D("75.00")

        empty = api_client.get("/payments/statistics?date_to=2000-01-01", headers=headers).json()
        assert empty["received_count"] == 0


class TestPurchaseOrderAdvances:
    def test_advances_capped_at_order_total(self, db_session, ctx, sample_vendor, sample_item):
        order = DocumentService(db_session, PurchaseOrder).create_document(DocumentCreate(
            contact_id=sample_vendor.id,
            items=[LineItemCreate(item_id=sample_item.id, quantity=D("1"))]
        ), ctx)
        service = PaymentService(db_session)
        service.create_payment(_payment(
            sample_vendor, "100", [(order, "100")], payment_type=PaymentType.ADVANCE_PAYMENT_MADE
        ), ctx)

        with pytest.raises(OverPayment):
            service.create_payment(_payment(
                sample_vendor, "50", [(order, "50")], payment_type=PaymentType.ADVANCE_PAYMENT_MADE
            ), ctx)

        last = service.create_payment(_payment(
            sample_vendor, "18", [(order, "18")], payment_type=PaymentType.ADVANCE_PAYMENT_MADE
        ), ctx)
        assert last.amount_used_for_allocations == D("18.00")
        db_session.refresh(order)
        assert order.balance is None
        assert order.status == DocumentStatus.OPEN
