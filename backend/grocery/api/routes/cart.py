"""Cart routes."""

from fastapi import APIRouter

from grocery.core.rbac import CurrentPrincipal
from grocery.core.validators import PositiveIntId
from grocery.db.session import DbSession
from grocery.schemas.cart import CartItemAdd, CartItemUpdate, CartResponse
from grocery.services.cart_service import CartService

router = APIRouter()


@router.get("", response_model=CartResponse)
def get_cart(db: DbSession, principal: CurrentPrincipal):
    return CartService(db, principal.user_id).summary()


@router.post("/items", response_model=CartResponse, status_code=201)
def add_cart_item(data: CartItemAdd, db: DbSession, principal: CurrentPrincipal):
    cart = CartService(db, principal.user_id)
    cart.add_item(data.product_id, data.quantity)
    return cart.summary()


@router.put("/items/{item_id}", response_model=CartResponse)
def update_cart_item(
    item_id: PositiveIntId, data: CartItemUpdate, db: DbSession, principal: CurrentPrincipal
):
    cart = CartService(db, principal.user_id)
    cart.update_item(item_id, data.quantity)
    return cart.summary()


@router.delete("/items/{item_id}", response_model=CartResponse)
def remove_cart_item(item_id: PositiveIntId, db: DbSession, principal: CurrentPrincipal):
    cart = CartService(db, principal.user_id)
    cart.remove_item(item_id)
    return cart.summary()
