"""
Tests for the client ledger: entries, running balance and balance queries
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from app.common.errors import CounterpartyNotFound
from app.modules.contacts.models import Contact
from app.modules.documents.models import Invoice
from app.modules.documents.schemas import DocumentCreate, LineItemCreate
from app.modules.documents.service import DocumentService
from app.modules.ledger.models import LedgerEntry, LedgerReferenceType
from app.modules.ledger.schemas import BalanceStatus
from app.modules.ledger.service import LedgerService, balance_status
from app.modules.payments.models import PaymentType
from app.modules.payments.schemas import PaymentCreate
from app.modules.payments.service import PaymentService

D = Decimal


def _add(service, ctx, contact, day, debit="0", credit="0", reference_type=LedgerReferenceType.INVOICE):
    return service.append(
        ctx.tenant_id, contact.id, reference_type,
        transaction_date=day, debit=D(debit), credit=D(credit), reference_id=uuid4()
    )


class TestBalanceStatus:
    def test_status(self):
        assert balance_status(D("10")) == BalanceStatus.RECEIVABLE
        assert balance_status(D("-0.01")) == BalanceStatus.ADVANCE
        assert balance_status(D("0")) == BalanceStatus.SETTLED


class TestAppend:
    def test_needs_exactly_one_side(self, db_session, ctx, sample_client):
        service = LedgerService(db_session)
        with pytest.raises(ValueError):
            _add(service, ctx, sample_client, date(2024, 1, 1), debit="10", credit="10")
        with pytest.raises(ValueError):
            _add(service, ctx, sample_client, date(2024, 1, 1))
        with pytest.raises(ValueError):
            _add(service, ctx, sample_client, date(2024, 1, 1), debit="-5")


class TestRunningBalance:
    def test_running_balance_in_date_order(self, db_session, ctx, sample_client):
        service = LedgerService(db_session)
        _add(service, ctx, sample_client, date(2024, 1, 10), debit="1000")
        _add(service, ctx, sample_client, date(2024, 1, 5), debit="200")
        _add(service, ctx, sample_client, date(2024, 1, 10), credit="300",
             reference_type=LedgerReferenceType.PAYMENT)
        db_session.commit()

        statement = service.running_balance(ctx.tenant_id, sample_client.id)
        assert [e.running_balance for e in statement.entries] == [D("200.00"), D("1200.00"), D("900.00")]
        assert statement.opening_balance == D("0")
        assert statement.closing_balance == D("900.00")
        assert statement.total == 3

    def test_date_from_carries_earlier_entries(self, db_session, ctx, sample_client):
        service = LedgerService(db_session)
        _add(service, ctx, sample_client, date(2024, 1, 1), debit="500")
        _add(service, ctx, sample_client, date(2024, 2, 1), credit="100",
             reference_type=LedgerReferenceType.PAYMENT)
        _add(service, ctx, sample_client, date(2024, 3, 1), debit="50")
        db_session.commit()

        statement = service.running_balance(ctx.tenant_id, sample_client.id, date_from=date(2024, 2, 1))
        assert statement.opening_balance == D("500.00")
        assert [e.running_balance for e in statement.entries] == [D("400.00"), D("450.00")]

        statement = service.running_balance(
            ctx.tenant_id, sample_client.id, date_from=date(2024, 2, 1), date_to=date(2024, 2, 28)
        )
        assert statement.total == 1
        assert statement.closing_balance == D("400.00")

    def test_pagination_keeps_cumulative_balance(self, db_session, ctx, sample_client):
        service = LedgerService(db_session)
        for day in range(1, 6):
            _add(service, ctx, sample_client, date(2024, 1, day), debit="10")
        db_session.commit()

        statement = service.running_balance(ctx.tenant_id, sample_client.id, limit=2, offset=2)
        assert statement.total == 5
        assert [e.running_balance for e in statement.entries] == [D("30.00"), D("40.00")]

    def test_unknown_contact(self, db_session, ctx):
        with pytest.raises(CounterpartyNotFound):
            LedgerService(db_session).running_balance(ctx.tenant_id, uuid4())


class TestOpeningBalance:
    def test_set_and_replace(self, db_session, ctx, sample_client):
        service = LedgerService(db_session)
        service.set_opening_balance(ctx, sample_client.id, D("250"), as_of=date(2023, 12, 31))
        service.set_opening_balance(ctx, sample_client.id, D("-75"), as_of=date(2023, 12, 31))
        db_session.commit()

        entries = db_session.query(LedgerEntry).filter(
            LedgerEntry.reference_type == LedgerReferenceType.OPENING_BALANCE
        ).all()
        assert len(entries) == 1
        assert entries[0].credit == D("75.00")

        balance = service.current_balance(ctx.tenant_id, sample_client.id)
        assert balance.balance == D("-75.00")
        assert balance.status == BalanceStatus.ADVANCE

    def test_zero_removes_entry(self, db_session, ctx, sample_client):
        service = LedgerService(db_session)
        service.set_opening_balance(ctx, sample_client.id, D("250"))
        assert service.set_opening_balance(ctx, sample_client.id, D("0")) is None
        db_session.commit()
        assert service.summary(ctx.tenant_id, sample_client.id).entry_count == 0


class TestDocumentsAndPayments:
    def test_invoice_and_payment_flow(self, db_session, ctx, sample_client, priced_item):
        invoice = DocumentService(db_session, Invoice).create_document(DocumentCreate(
            contact_id=sample_client.id,
            issue_date=date(2024, 4, 1),
            items=[LineItemCreate(item_id=priced_item.id)]
        ), ctx)
        PaymentService(db_session).create_payment(PaymentCreate(
            payment_type=PaymentType.PAYMENT_RECEIVED,
            contact_id=sample_client.id,
            payment_no="PR-1",
            amount=D("400"),
            payment_date=date(2024, 4, 15),
            allocations=[{"document_id": invoice.id, "document_type": "invoice", "value": "400"}]
        ), ctx)

        service = LedgerService(db_session)
        statement = service.running_balance(ctx.tenant_id, sample_client.id)
        assert [e.reference_type for e in statement.entries] == [
            LedgerReferenceType.INVOICE, LedgerReferenceType.PAYMENT
        ]
        assert statement.entries[0].document_number == invoice.number
        assert statement.closing_balance == D("600.00")

        summary = service.summary(ctx.tenant_id, sample_client.id)
        assert summary.total_debit == D("1000.00")
        assert summary.total_credit == D("400.00")
        assert summary.entry_count == 2
        assert summary.status == BalanceStatus.RECEIVABLE

    def test_balances_across_clients(self, db_session, ctx, sample_company, sample_client, sample_vendor):
        service = LedgerService(db_session)
        settled = Contact(tenant_id=sample_company.id, name="Settled client", type=["client"])
        advance = Contact(tenant_id=sample_company.id, name="Advance client", type=["client", "provider"])
        db_session.add_all([settled, advance])
        db_session.commit()

        _add(service, ctx, sample_client, date(2024, 1, 1), debit="300")
        _add(service, ctx, advance, date(2024, 1, 1), credit="50", reference_type=LedgerReferenceType.PAYMENT)
        db_session.commit()

        result = service.balances(ctx.tenant_id)
        assert [row.contact_name for row in result.items] == ["Shree Textiles", "Advance client"]
        assert [row.status for row in result.items] == [BalanceStatus.RECEIVABLE, BalanceStatus.ADVANCE]

        with_zero = service.balances(ctx.tenant_id, include_zero=True)
        assert with_zero.total == 3
        assert "Deccan Supplies" not in [row.contact_name for row in with_zero.items]


class TestLedgerAPI:
    def test_ledger_endpoints(self, api_client, headers, ctx, db_session, sample_client):
        response = api_client.put(f"/clients/{sample_client.id}/opening-balance", headers=headers,
                                  json={"amount": "150.00", "as_of": "2024-01-01"})
        assert response.status_code == 200
        assert D(response.json()["balance"]) == D("150.00")
        assert response.json()["status"] == "Receivable"

        service = LedgerService(db_session)
        _add(service, ctx, sample_client, date(2024, 2, 1), credit="50", reference_type=LedgerReferenceType.PAYMENT)
        db_session.commit()

        response = api_client.get(f"/clients/{sample_client.id}/ledger?from=2024-01-15", headers=headers)
        assert response.status_code == 200
        body = response.json()
        assert D(body["opening_balance"]) == D("150.00")
        assert D(body["entries"][0]["running_balance"]) == D("100.00")

        response = api_client.get(f"/clients/{sample_client.id}/ledger/summary", headers=headers)
        assert response.json()["entry_count"] == 2

        response = api_client.get("/ledger/balances", headers=headers)
        assert response.json()["total"] == 1

    def test_opening_balance_needs_client(self, api_client, headers, sample_vendor):
        response = api_client.put(f"/clients/{sample_vendor.id}/opening-balance", headers=headers,
                                  json={"amount": "10"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "invalid_document"
