"""Warehouse read models and reorder-level maintenance."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from grocery.core.config import settings
from grocery.core.errors import NotFound, ValidationFailed
from grocery.models.product import Product
from grocery.models.warehouse import StockMovement, Warehouse, WarehouseStock

logger = logging.getLogger(__name__)


class WarehouseService:
    """Stock overview, movement history and reorder levels."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_warehouse(self, warehouse_id: Optional[int] = None) -> Warehouse:
        """The requested warehouse, or the default one when none is given."""
        if warehouse_id is not None:
            warehouse = self.db.get(Warehouse, warehouse_id)
        else:
            warehouse = self.db.scalar(
                select(Warehouse).where(Warehouse.code == settings.default_warehouse_code)
            )
        if warehouse is None or not warehouse.is_active:
            raise NotFound(
                "Warehouse not found",
                warehouse_id=warehouse_id,
                warehouse_code=None if warehouse_id is not None else settings.default_warehouse_code,
            )
        return warehouse

    def get_or_create_default(self) -> Warehouse:
        warehouse = self.db.scalar(
            select(Warehouse).where(Warehouse.code == settings.default_warehouse_code)
        )
        if warehouse is None:
            warehouse = Warehouse(
                code=settings.default_warehouse_code,
                name="Main warehouse",
                is_active=True,
            )
            self.db.add(warehouse)
            self.db.commit()
            logger.info("Created default warehouse %s", warehouse.code)
        return warehouse

    def overview(self, warehouse_id: Optional[int] = None) -> Dict[str, Any]:
        """Stock rows with availability, plus the low-stock reorder view."""
        warehouse = self.resolve_warehouse(warehouse_id)
        rows = self.db.scalars(
            select(WarehouseStock)
            .options(joinedload(WarehouseStock.product))
            .where(WarehouseStock.warehouse_id == warehouse.id)
            .order_by(WarehouseStock.product_id)
        ).all()

        items = []
        low_stock = []
        for row in rows:
            entry = {
                "product_id": row.product_id,
                "product_name": row.product.name if row.product else None,
                "quantity": row.quantity,
                "reserved_quantity": row.reserved_quantity,
                "available": row.available,
                "reorder_min": row.reorder_min,
                "reorder_target": row.reorder_target,
                "updated_at": row.updated_at,
            }
            items.append(entry)
            if row.available < row.reorder_min:
                low_stock.append({
                    **entry,
                    "order_suggestion": max(row.reorder_target - row.available, 0),
                })

        return {
            "warehouse": {"id": warehouse.id, "code": warehouse.code, "name": warehouse.name},
            "items": items,
            "low_stock": low_stock,
            "totals": {
                "products": len(items),
                "quantity": sum(i["quantity"] for i in items),
                "reserved_quantity": sum(i["reserved_quantity"] for i in items),
                "available": sum(i["available"] for i in items),
                "low_stock": len(low_stock),
            },
        }

    def movements(
        self,
        warehouse_id: Optional[int] = None,
        product_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[StockMovement]:
        """Movement history, newest first."""
        query = select(StockMovement)
        if warehouse_id is not None:
            query = query.where(StockMovement.warehouse_id == warehouse_id)
        if product_id is not None:
            query = query.where(StockMovement.product_id == product_id)
        query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
        return list(self.db.scalars(query).all())

    def set_reorder_levels(
        self,
        product_id: int,
        reorder_min: int,
        reorder_target: int,
        warehouse_id: Optional[int] = None,
    ) -> WarehouseStock:
        if reorder_min < 0 or reorder_target < 0:
            raise ValidationFailed("Reorder levels must not be negative")
        if reorder_target < reorder_min:
            raise ValidationFailed(
                "Reorder target must be at least the reorder minimum",
                reorder_min=reorder_min,
                reorder_target=reorder_target,
            )

        warehouse = self.resolve_warehouse(warehouse_id)
        if self.db.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)

        row = self.db.scalar(
            select(WarehouseStock).where(
                WarehouseStock.warehouse_id == warehouse.id,
                WarehouseStock.product_id == product_id,
            )
        )
        if row is None:
            row = WarehouseStock(
                warehouse_id=warehouse.id,
                product_id=product_id,
                quantity=0,
                reserved_quantity=0,
            )
            self.db.add(row)
        row.reorder_min = reorder_min
        row.reorder_target = reorder_target
        self.db.commit()
        self.db.refresh(row)
        return row
