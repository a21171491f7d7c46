"""
Shared pytest fixtures.

Tests run against an in-memory SQLite database; the environment is set
before the application is imported so settings pick it up.
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OUTBOX_DISPATCH_ENABLED"] = "false"
os.environ["DEBUG"] = "false"

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.database.database import Base, SessionLocal, get_db, sync_engine
from app.dependencies.companyDependencies import ActingContext
from app.main import app
from app.modules.catalog.models import Item, Unit
from app.modules.company.models import Company
from app.modules.contacts.models import Contact, ContactType


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=sync_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture
def api_client(db_session):
    """TestClient sharing the test session with the request handlers"""
    app.dependency_overrides[get_db] = lambda: db_session
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def sample_company(db_session):
    company = Company(name="Acme Traders", state="Gujarat", email="billing@acme.test")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture
def ctx(sample_company):
    return ActingContext(tenant_id=sample_company.id, user_id=uuid4())


@pytest.fixture
def headers(ctx):
    return {"X-Company-ID": str(ctx.tenant_id), "X-User-ID": str(ctx.user_id)}


@pytest.fixture
def sample_client(db_session, sample_company):
    contact = Contact(
        tenant_id=sample_company.id,
        name="Shree Textiles",
        type=[ContactType.CLIENT.value],
        email="accounts@shree.test",
        state="Gujarat"
    )
    db_session.add(contact)
    db_session.commit()
    return contact


@pytest.fixture
def sample_vendor(db_session, sample_company):
    contact = Contact(
        tenant_id=sample_company.id,
        name="Deccan Supplies",
        type=[ContactType.PROVIDER.value],
        email="sales@deccan.test",
        state="Maharashtra"
    )
    db_session.add(contact)
    db_session.commit()
    return contact


@pytest.fixture
def sample_unit(db_session, sample_company):
    unit = Unit(tenant_id=sample_company.id, name="Piece", symbol="pcs")
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture
def sample_item(db_session, sample_company, sample_unit):
    item = Item(
        tenant_id=sample_company.id,
        name="Cotton fabric",
        hsn_code="5208",
        unit_id=sample_unit.id,
        unit_price=Decimal("100.00"),
        tax_rate=Decimal("18.00"),
        cess_rate=Decimal("1.00")
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture
def priced_item(db_session, sample_company, sample_unit):
    """18% item priced so that one unit totals exactly 1000.00"""
    item = Item(
        tenant_id=sample_company.id,
        name="Consulting hour",
        sac_code="998311",
        unit_id=sample_unit.id,
        unit_price=Decimal("847.46"),
        tax_rate=Decimal("18.00")
    )
    db_session.add(item)
    db_session.commit()
    return item
