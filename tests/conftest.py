import datetime as dt
import os
from decimal import Decimal

os.environ["EVENTS_ENABLED"] = "false"
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rental_service import quotations
from rental_service.auth import get_current_user
from rental_service.database import get_db
from rental_service.main import app
from rental_service.models import Base, Product
from rental_service.pricing import RentalInterval

CUSTOMER = 1
OTHER_CUSTOMER = 2
VENDOR_A = 10
VENDOR_B = 20
ADMIN = 99

UTC = dt.timezone.utc


def at(day: int, hour: int = 0, month: int = 1, year: int = 2030) -> dt.datetime:
    return dt.datetime(year, month, day, hour, tzinfo=UTC)


def interval(start_day: int, end_day: int, month: int = 1) -> RentalInterval:
    return RentalInterval(at(start_day, month=month), at(end_day, month=month))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_product(db):
    """Factory for published products owned by VENDOR_A unless told otherwise."""

    def _make(
        vendor_id=VENDOR_A,
        quantity=5,
        per_hour=None,
        per_day=Decimal("100.00"),
        per_week=None,
        name="Camera",
        published=True,
    ):
        product = Product(
            vendor_id=vendor_id,
            name=name,
            quantity_on_hand=quantity,
            price_per_hour=per_hour,
            price_per_day=per_day,
            price_per_week=per_week,
            is_published=published,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def submitted_quotation(db):
    """Factory: a quotation with the given (product, qty, interval) lines, already submitted."""

    def _make(lines, customer_id=CUSTOMER, delivery_address="12 MG Road"):
        quotation = quotations.create_quotation(db, customer_id)
        for product, qty, period in lines:
            quotations.add_line(db, quotation.id, customer_id, product.id, qty, period)
        return quotations.submit(db, quotation.id, customer_id, delivery_address)

    return _make


@pytest.fixture
def caller():
    """The identity get_current_user resolves to; tests mutate it to switch roles."""
    return {"id": CUSTOMER, "username": "cust", "email": "cust@example.com", "role": "CUSTOMER", "is_admin": False}


@pytest.fixture
def client(db, caller):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = lambda: caller
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def as_vendor(caller, vendor_id=VENDOR_A):
    caller.update(id=vendor_id, username=f"vendor{vendor_id}", role="VENDOR", is_admin=False)


def as_customer(caller, customer_id=CUSTOMER):
    caller.update(id=customer_id, username="cust", role="CUSTOMER", is_admin=False)
