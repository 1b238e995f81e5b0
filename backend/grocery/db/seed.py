"""Demo data for local development.

Creates the default warehouse, a small catalog with stock, an admin account
and an approved courier. Safe to run repeatedly: existing rows are left alone.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from grocery.core.rbac import UserRole
from grocery.core.security import get_password_hash
from grocery.models.courier import Courier, CourierStatus, VerificationStatus
from grocery.models.product import Product
from grocery.models.user import User
from grocery.services.stock_ledger_service import StockLedgerService
from grocery.services.warehouse_service import WarehouseService

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    ("Milk 3.2% 1L", "Dairy", Decimal("1.19"), 40),
    ("Rye bread", "Bakery", Decimal("0.89"), 25),
    ("Bananas 1kg", "Fruit", Decimal("1.49"), 60),
    ("Eggs, dozen", "Dairy", Decimal("2.35"), 30),
    ("Buckwheat 900g", "Grocery", Decimal("1.75"), 15),
]


def _get_or_create_user(db: Session, email: str, full_name: str, role: UserRole) -> User:
    user = db.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(
            email=email,
            full_name=full_name,
            role=role,
            password_hash=get_password_hash("demo-password"),
        )
        db.add(user)
        db.commit()
        logger.info("Seeded %s user %s", role.value, email)
    return user


def seed_demo_data(db: Session) -> None:
    warehouse = WarehouseService(db).get_or_create_default()

    _get_or_create_user(db, "admin@example.com", "Demo Admin", UserRole.ADMIN)
    courier_user = _get_or_create_user(db, "courier@example.com", "Demo Courier", UserRole.COURIER)
    if db.scalar(select(Courier).where(Courier.user_id == courier_user.id)) is None:
        db.add(Courier(
            user_id=courier_user.id,
            vehicle_type="bike",
            status=CourierStatus.OFFLINE.value,
            verification_status=VerificationStatus.APPROVED.value,
            transport_license="DEMO-LICENSE",
            vehicle_registration_number="DEMO-001",
            tech_passport_image_url="https://example.com/demo-passport.jpg",
        ))
        db.commit()

    ledger = StockLedgerService(db)
    for name, category, price, quantity in DEMO_PRODUCTS:
        if db.scalar(select(Product.id).where(Product.name == name)) is not None:
            continue
        product = Product(name=name, category=category, price=price)
        db.add(product)
        db.commit()
        ledger.receive(warehouse.id, product.id, quantity, reason="Demo seed")

    logger.info("Demo data ready in warehouse %s", warehouse.code)
