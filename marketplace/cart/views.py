# module marketplace.cart.views
"""Endpoints API du panier (/api/v1/cart).
- Toutes les routes exigent un utilisateur authentifié (require_user).
- Les erreurs métier (InvalidQuantity, ProductUnavailable) remontent au handler global.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from marketplace.utils.security import RequestContext, require_user
from . import service as cart_service

router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])


class AddItemRequest(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class UpdateQuantityRequest(BaseModel):
    quantity: int = Field(ge=0)


@router.get("")
async def get_cart(ctx: RequestContext = Depends(require_user)):
    """Panier courant avec prix actuels, sous-totaux et total."""
    return await cart_service.cart_summary(ctx.user_id)


@router.post("/items", status_code=201)
async def add_item(req: AddItemRequest, ctx: RequestContext = Depends(require_user)):
    await cart_service.add_item(ctx.user_id, req.product_id, req.quantity)
    return await cart_service.cart_summary(ctx.user_id)


@router.patch("/items/{product_id}")
async def update_item(product_id: str, req: UpdateQuantityRequest, ctx: RequestContext = Depends(require_user)):
    """Fixe la quantité; 0 retire l'article."""
    await cart_service.update_quantity(ctx.user_id, product_id, req.quantity)
    return await cart_service.cart_summary(ctx.user_id)


@router.delete("/items/{product_id}")
async def remove_item(product_id: str, ctx: RequestContext = Depends(require_user)):
    await cart_service.remove_item(ctx.user_id, product_id)
    return await cart_service.cart_summary(ctx.user_id)


@router.delete("", status_code=204)
async def clear_cart(ctx: RequestContext = Depends(require_user)):
    await cart_service.clear_cart(ctx.user_id)
