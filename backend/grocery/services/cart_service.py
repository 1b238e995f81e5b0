"""Shopping cart consumed by order creation."""

from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from grocery.core.errors import InvalidQuantity, NotFound, ValidationFailed
from grocery.models.product import CartItem, Product


class CartService:
    def __init__(self, db: Session, user_id: int):
        self.db = db
        self.user_id = user_id

    def summary(self) -> Dict[str, Any]:
        items = self.db.scalars(
            select(CartItem)
            .options(joinedload(CartItem.product))
            .where(CartItem.user_id == self.user_id)
            .order_by(CartItem.id)
        ).all()
        lines = [
            {
                "id": item.id,
                "product_id": item.product_id,
                "name": item.product.name,
                "price": item.product.price,
                "quantity": item.quantity,
                "line_total": Decimal(str(item.product.price)) * item.quantity,
            }
            for item in items
        ]
        return {
            "items": lines,
            "total": sum((line["line_total"] for line in lines), Decimal("0")),
        }

    def add_item(self, product_id: int, quantity: int = 1) -> CartItem:
        """Add a product; adding one that is already in the cart increases its quantity."""
        self._check_quantity(quantity)
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        if not product.in_stock:
            raise ValidationFailed("Product is out of stock", product_id=product_id)

        item = self.db.scalar(
            select(CartItem).where(
                CartItem.user_id == self.user_id, CartItem.product_id == product_id
            )
        )
        if item is None:
            item = CartItem(user_id=self.user_id, product_id=product_id, quantity=quantity)
            self.db.add(item)
        else:
            item.quantity += quantity
        self.db.commit()
        self.db.refresh(item)
        return item

    def update_item(self, item_id: int, quantity: int) -> CartItem:
        self._check_quantity(quantity)
        item = self._get_item(item_id)
        item.quantity = quantity
        self.db.commit()
        self.db.refresh(item)
        return item

    def remove_item(self, item_id: int) -> None:
        item = self._get_item(item_id)
        self.db.delete(item)
        self.db.commit()

    def _get_item(self, item_id: int) -> CartItem:
        item = self.db.get(CartItem, item_id)
        if item is None or item.user_id != self.user_id:
            raise NotFound(f"Cart item {item_id} not found", cart_item_id=item_id)
        return item

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantity(quantity=quantity)
