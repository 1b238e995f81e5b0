"""Warehouse pick task models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grocery.db.base import Base, TimestampMixin


class PickTaskStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


ACTIVE_TASK_STATUSES = (PickTaskStatus.NEW.value, PickTaskStatus.IN_PROGRESS.value)
TERMINAL_TASK_STATUSES = (PickTaskStatus.DONE.value, PickTaskStatus.CANCELLED.value)
ACTIVE_TASK_FILTER = "status IN ('new', 'in_progress')"


class PickTask(Base, TimestampMixin):
    """Work order to gather one order's line items in one warehouse."""

    __tablename__ = "pick_tasks"
    __table_args__ = (
        # At most one new/in_progress task per order
        Index(
            "uq_pick_tasks_active_order",
            "order_id",
            unique=True,
            sqlite_where=text(ACTIVE_TASK_FILTER),
            postgresql_where=text(ACTIVE_TASK_FILTER),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=PickTaskStatus.NEW.value, nullable=False, index=True
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    items: Mapped[List["PickTaskItem"]] = relationship(
        "PickTaskItem", back_populates="task", cascade="all, delete-orphan",
        order_by="PickTaskItem.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


class PickTaskItem(Base):
    """One product line of a pick task."""

    __tablename__ = "pick_task_items"
    __table_args__ = (
        CheckConstraint("requested_qty > 0", name="ck_pick_item_requested"),
        CheckConstraint("picked_qty >= 0", name="ck_pick_item_picked"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    pick_task_id: Mapped[int] = mapped_column(
        ForeignKey("pick_tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    requested_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    picked_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    task: Mapped["PickTask"] = relationship("PickTask", back_populates="items")
