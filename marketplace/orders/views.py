# module marketplace.orders.views
"""Endpoints des commandes (/api/v1/orders).
- Historique et détail pour le client propriétaire.
- Vue fournisseur: commandes contenant ses produits (toutes pour un admin).
- Mise à jour de statut: fournisseur/admin, 404 si inconnue, 403 si non concerné, 409 si transition interdite.
"""
from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from marketplace.utils.security import RequestContext, require_supplier_or_admin, require_user
from . import service as orders_service
from .models import OrderStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])


class UpdateStatusRequest(BaseModel):
    order_id: str
    status: OrderStatus
    force: bool = False


@router.get("")
async def order_history(ctx: RequestContext = Depends(require_user)) -> Dict[str, Any]:
    orders = await orders_service.list_orders_for(ctx)
    return {"orders": [o.to_dict() for o in orders]}


@router.get("/supplier")
async def supplier_orders(ctx: RequestContext = Depends(require_supplier_or_admin)) -> Dict[str, Any]:
    orders = await orders_service.list_supplier_orders(ctx)
    return {"orders": [o.to_dict() for o in orders]}


@router.post("/update-status")
async def update_order_status(req: UpdateStatusRequest, ctx: RequestContext = Depends(require_supplier_or_admin)):
    """Applique un statut opérateur; renvoie la commande mise à jour."""
    order = await orders_service.update_status_by_operator(ctx, req.order_id, req.status, force=req.force)
    return {"success": True, "order": order.to_dict()}


@router.get("/{order_id}")
async def order_details(order_id: str, ctx: RequestContext = Depends(require_user)) -> Dict[str, Any]:
    order = await orders_service.get_order_for(ctx, order_id)
    return order.to_dict()
