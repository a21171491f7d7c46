"""
Tests for the transaction boundary and the decimal helpers
"""

import pytest
from decimal import Decimal
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from app.common.errors import Aborted, DocumentLocked
from app.common.transaction import transaction_scope
from app.common.validators import money, validate_percentage
from app.modules.company.models import Company


class PgError(Exception):
    """Driver error carrying a PostgreSQL SQLSTATE, as psycopg2 raises them"""

    def __init__(self, pgcode):
        super().__init__(f"SQLSTATE {pgcode}")
        self.pgcode = pgcode


def _db_error(pgcode=None):
    orig = PgError(pgcode) if pgcode else Exception("disk I/O error")
    return OperationalError("UPDATE documents SET balance = balance", {}, orig)


def _company_count(db_session):
    return db_session.query(Company).count()


class TestTransactionScope:
    def test_commits_on_success(self, db_session):
        with transaction_scope(db_session, "company setup"):
            db_session.add(Company(name="Nova Exports", state="Kerala"))

        db_session.expire_all()
        assert _company_count(db_session) == 1

    @pytest.mark.parametrize("pgcode", ["55P03", "57014", "40P01", "40001"])
    def test_conflicts_become_aborted(self, db_session, pgcode):
        with pytest.raises(Aborted) as exc_info:
            with transaction_scope(db_session, "payment creation"):
                db_session.add(Company(name="Nova Exports", state="Kerala"))
                db_session.flush()
                raise _db_error(pgcode)

        assert exc_info.value.status_code == 503
        assert exc_info.value.detail["code"] == "aborted"
        assert "payment creation" in exc_info.value.detail["message"]
        assert _company_count(db_session) == 0

    def test_other_database_errors_are_500(self, db_session):
        with pytest.raises(HTTPException) as exc_info:
            with transaction_scope(db_session, "payment creation"):
                db_session.add(Company(name="Nova Exports", state="Kerala"))
                db_session.flush()
                raise _db_error()

        assert not isinstance(exc_info.value, Aborted)
        assert exc_info.value.status_code == 500
        assert _company_count(db_session) == 0

    def test_missing_table_is_not_retryable(self, db_session):
        with pytest.raises(HTTPException) as exc_info:
            with transaction_scope(db_session, "ledger query"):
                db_session.execute(text("SELECT * FROM no_such_table"))

        assert not isinstance(exc_info.value, Aborted)
        assert exc_info.value.status_code == 500

    def test_domain_errors_pass_through(self, db_session):
        with pytest.raises(DocumentLocked):
            with transaction_scope(db_session, "invoice update"):
                db_session.add(Company(name="Nova Exports", state="Kerala"))
                db_session.flush()
                raise DocumentLocked("Invoice INV-000001 is Paid and cannot be edited")

        assert _company_count(db_session) == 0

    def test_unexpected_errors_are_500(self, db_session):
        with pytest.raises(HTTPException) as exc_info:
            with transaction_scope(db_session, "invoice update"):
                raise KeyError("items")

        assert exc_info.value.status_code == 500


class TestValidators:
    def test_money_rounds_half_up(self):
        assert money("2.005") == Decimal("2.01")
        assert money(10) == Decimal("10.00")
        with pytest.raises(ValueError):
            money(None)

    def test_percentage_bounds(self):
        assert validate_percentage(None) is None
        assert validate_percentage("12.5") == Decimal("12.5")
        with pytest.raises(ValueError):
            validate_percentage("101")
