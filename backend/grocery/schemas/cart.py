"""Cart schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import List

from pydantic import BaseModel


class CartItemAdd(BaseModel):
    product_id: int
    quantity: int = 1


class CartItemUpdate(BaseModel):
    quantity: int


class CartLine(BaseModel):
    id: int
    product_id: int
    name: str
    price: Decimal
    quantity: int
    line_total: Decimal


class CartResponse(BaseModel):
    items: List[CartLine]
    total: Decimal
