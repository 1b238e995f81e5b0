"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from grocery.core.rbac import UserRole
from grocery.core.security import create_access_token
from grocery.db.base import Base
from grocery.db.session import enable_sqlite_foreign_keys, get_db
from grocery.main import app
# Import all models to ensure they're registered with Base.metadata
from grocery.models import *  # noqa: F401,F403
from grocery.models.courier import Courier, CourierStatus, VerificationStatus
from grocery.models.product import CartItem, Product
from grocery.models.user import User
from grocery.models.warehouse import Warehouse
from grocery.services.audit_service import AuditSink

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """Sessions on a file-backed SQLite database, one connection per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'grocery.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session, session_factory) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    previous_sink = app.state.audit_sink
    app.state.audit_sink = AuditSink(session_factory=session_factory)
    # Disable rate limiting during tests to avoid flaky failures
    from grocery.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.state.audit_sink = previous_sink
    app.dependency_overrides.clear()


# ============== Users & auth ==============

def make_user(db: Session, email: str, role: UserRole, **kwargs) -> User:
    user = User(
        email=email,
        full_name=kwargs.pop("full_name", email.split("@")[0].title()),
        role=role,
        is_active=True,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def token_for(user: User) -> str:
    return create_access_token(
        data={
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "session_version": user.session_version,
        }
    )


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def customer(db_session: Session) -> User:
    return make_user(
        db_session, "customer@example.com", UserRole.CUSTOMER,
        full_name="Test Customer", address="Springfield, ул. Ленина, дом 44",
    )


@pytest.fixture
def other_customer(db_session: Session) -> User:
    return make_user(db_session, "other@example.com", UserRole.CUSTOMER)


@pytest.fixture
def admin(db_session: Session) -> User:
    return make_user(db_session, "admin@example.com", UserRole.ADMIN, full_name="Test Admin")


@pytest.fixture
def staff_no_perms(db_session: Session) -> User:
    return make_user(db_session, "staff@example.com", UserRole.STAFF, permissions=[])


@pytest.fixture
def warehouse_staff(db_session: Session) -> User:
    return make_user(
        db_session, "picker@example.com", UserRole.STAFF, permissions=["manage_warehouse"]
    )


@pytest.fixture
def customer_headers(customer: User) -> dict:
    return headers_for(customer)


@pytest.fixture
def admin_headers(admin: User) -> dict:
    return headers_for(admin)


# ============== Couriers ==============

def make_courier(
    db: Session,
    email: str,
    status: str = CourierStatus.AVAILABLE.value,
    approved: bool = True,
    max_active_orders: int = 5,
) -> Courier:
    user = make_user(db, email, UserRole.COURIER)
    courier = Courier(
        user_id=user.id,
        vehicle_type="bike",
        status=status,
        max_active_orders=max_active_orders,
    )
    if approved:
        courier.verification_status = VerificationStatus.APPROVED.value
        courier.transport_license = "LIC-001"
        courier.vehicle_registration_number = "REG-001"
        courier.tech_passport_image_url = "https://example.com/passport.jpg"
    db.add(courier)
    db.commit()
    db.refresh(courier)
    return courier


@pytest.fixture
def courier(db_session: Session) -> Courier:
    """An approved, available courier."""
    return make_courier(db_session, "courier@example.com")


@pytest.fixture
def courier_headers(courier: Courier) -> dict:
    return headers_for(courier.user)


# ============== Catalog & warehouse ==============

@pytest.fixture
def warehouse(db_session: Session) -> Warehouse:
    wh = Warehouse(code="MAIN", name="Main warehouse", is_active=True)
    db_session.add(wh)
    db_session.commit()
    db_session.refresh(wh)
    return wh


def make_product(db: Session, name: str, price: str = "10.00") -> Product:
    product = Product(name=name, price=Decimal(price), category="Grocery", in_stock=True)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def product_a(db_session: Session) -> Product:
    return make_product(db_session, "Milk", "1.19")


@pytest.fixture
def product_b(db_session: Session) -> Product:
    return make_product(db_session, "Bread", "0.89")


def add_to_cart(db: Session, user: User, product: Product, quantity: int) -> CartItem:
    item = CartItem(user_id=user.id, product_id=product.id, quantity=quantity)
    db.add(item)
    db.commit()
    return item
