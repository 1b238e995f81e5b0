"""Warehouse models: Warehouse, WarehouseStock and StockMovement."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grocery.db.base import Base


class MovementType(str, Enum):
    """Kinds of stock ledger movements."""

    RECEIVE = "receive"  # Goods arrived
    WRITEOFF = "writeoff"  # Spoilage, breakage, loss
    RESERVE = "reserve"  # Held for a pick task
    RELEASE = "release"  # Reservation returned to available
    PICK = "pick"  # Reserved stock physically removed


class Warehouse(Base):
    """Physical stock location."""

    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class WarehouseStock(Base):
    """Current stock level of one product in one warehouse."""

    __tablename__ = "warehouse_stock"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "product_id", name="uq_warehouse_stock_product"),
        CheckConstraint("quantity >= 0", name="ck_warehouse_stock_quantity"),
        CheckConstraint("reserved_quantity >= 0", name="ck_warehouse_stock_reserved"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_warehouse_stock_reserved_le_qty"),
        CheckConstraint("reorder_min >= 0", name="ck_warehouse_stock_reorder_min"),
        CheckConstraint("reorder_target >= 0", name="ck_warehouse_stock_reorder_target"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reorder_min: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    reorder_target: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    warehouse: Mapped["Warehouse"] = relationship("Warehouse")
    product: Mapped["Product"] = relationship("Product")

    @property
    def available(self) -> int:
        return max(self.quantity - self.reserved_quantity, 0)


class StockMovement(Base):
    """Immutable ledger entry written by every stock mutation."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movement_quantity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


# Forward references
from grocery.models.product import Product
