# module marketplace.payments.views
"""Endpoints paiement (/api/v1/payments): vérification manuelle du statut et fournisseurs d'un numéro."""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends

from marketplace.errors import InvalidPhoneNumber, OrderNotFound
from marketplace.orders import service as orders_service
from marketplace.utils.security import RequestContext, require_user
from . import reconciler
from .gateway import calculate_fees
from .phone import available_providers, normalize_phone_number

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])


@router.post("/{order_id}/refresh")
async def refresh_payment(order_id: str, ctx: RequestContext = Depends(require_user)) -> Dict[str, Any]:
    order = await orders_service.get_order(order_id)
    if not ctx.is_admin and order.customer_id != ctx.user_id:
        raise OrderNotFound(order_id=order_id)
    outcome = await reconciler.refresh_payment_status(order_id)
    return {"success": True, **outcome.to_dict()}


@router.get("/providers")
async def providers_for_phone(phone_number: str, amount: Optional[str] = None) -> Dict[str, Any]:
    """Fournisseurs disponibles pour un numéro (+ frais si `amount` est fourni)."""
    try:
        normalized = normalize_phone_number(phone_number)
    except InvalidPhoneNumber:
        return {"valid": False, "phone_number": phone_number, "providers": []}
    providers = available_providers(normalized)
    data: Dict[str, Any] = {"valid": bool(providers), "phone_number": normalized, "providers": providers}
    if amount and providers:
        data["fees"] = calculate_fees(amount, providers[0])
    return data
