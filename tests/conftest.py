"""Shared fixtures.

Every test gets a fresh in-memory SQLite database shared through a
StaticPool, and the payment gateway dependency is replaced by a
``FakeGateway`` that records refunds and can be told to misbehave.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kuja.database import Base, get_db
from kuja.main import app
from kuja.models import Destination, TravelPackage, User
from kuja.auth.utils import create_access_token, get_password_hash
from kuja.auth.dependencies import SessionContext
from kuja.bookings.schemas import CustomerInfo
from kuja.payments.gateways import SimulatedGateway, GatewayResult, get_gateway
from kuja.errors import GatewayError


class FakeGateway(SimulatedGateway):
    def __init__(self):
        super().__init__()
        self.stk_outcome = None
        self.fail_stk_push = False
        self.fail_refunds = False
        self.refund_calls = []

    def stk_push(self, phone, amount, reference, description):
        if self.fail_stk_push:
            raise GatewayError("Payment gateway unavailable")
        return super().stk_push(phone, amount, reference, description)

    def query_stk(self, checkout_request_id):
        if self.stk_outcome is not None:
            return GatewayResult(status=self.stk_outcome, checkout_request_id=checkout_request_id,
                                 message="Request cancelled by user" if self.stk_outcome == "failed" else None)
        return super().query_stk(checkout_request_id)

    def refund(self, payment):
        self.refund_calls.append(payment.id)
        if self.fail_refunds:
            raise GatewayError("Refund service unavailable")
        return super().refund(payment)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db, name, email, role="user"):
    user = User(
        name=name,
        email=email,
        password=get_password_hash("safari123"),
        role=role,
        phone="0712345678"
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return _make_user(db, "Amani Otieno", "amani.otieno@gmail.com")


@pytest.fixture
def other_user(db):
    return _make_user(db, "Wanjiru Kamau", "wanjiru.kamau@gmail.com")


@pytest.fixture
def admin(db):
    return _make_user(db, "Kuja Admin", "admin@kujatwende.co.ke", role="admin")


def _context(user):
    return SessionContext(user_id=user.id, email=user.email, name=user.name, role=user.role)


@pytest.fixture
def user_ctx(user):
    return _context(user)


@pytest.fixture
def other_ctx(other_user):
    return _context(other_user)


@pytest.fixture
def admin_ctx(admin):
    return _context(admin)


def _headers(user):
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(user):
    return _headers(user)


@pytest.fixture
def other_headers(other_user):
    return _headers(other_user)


@pytest.fixture
def admin_headers(admin):
    return _headers(admin)


@pytest.fixture
def destination(db):
    destination = Destination(
        name="Maasai Mara",
        slug="maasai-mara",
        description="Home of the great wildebeest migration",
        region="Rift Valley",
        best_time_to_visit="July - October",
        highlights=["Big Five", "Migration"],
        activities=["Game drives"],
        featured=True,
        active=True
    )
    db.add(destination)
    db.commit()
    db.refresh(destination)
    return destination


@pytest.fixture
def make_package(db, destination):
    def factory(**overrides):
        values = dict(
            destination_id=destination.id,
            name="Mara Weekend Safari",
            description="Three days in the Mara",
            duration_days=3,
            price=Decimal("5000"),
            is_free=False,
            total_seats=10,
            available_seats=10,
            booked_seats=0,
            status="active",
            start_date=date.today() + timedelta(days=14),
            end_date=date.today() + timedelta(days=17)
        )
        values.update(overrides)
        package = TravelPackage(**values)
        db.add(package)
        db.commit()
        db.refresh(package)
        return package
    return factory


@pytest.fixture
def package(make_package):
    return make_package()


@pytest.fixture
def customer():
    return CustomerInfo(name="Amani Otieno", email="amani.otieno@gmail.com", phone="0712345678")


@pytest.fixture
def travel_date():
    return date.today() + timedelta(days=30)
