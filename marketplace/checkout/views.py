# module marketplace.checkout.views
"""Endpoints du checkout (/api/v1/checkout).
- GET  "": récapitulatif avant paiement
- POST "": création de commande + initiation du paiement (JSON ou formulaire, rate-limité)
  201 si la demande de paiement est partie, 202 si le fournisseur n'a pas répondu à temps,
  200 si la clé d'idempotence correspond à une commande existante
- GET  /payment-pending/{order_id}?ref=...: suivi du paiement
- POST /webhook/{provider}: callbacks fournisseurs, toujours acquittés (200)
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from marketplace.orders.models import OrderStatus
from marketplace.payments import gateway
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.security import RequestContext, require_user
from . import service as checkout_service
from .models import CheckoutRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def _read_checkout_request(request: Request, idempotency_key: Optional[str]) -> CheckoutRequest:
    """Accepte un corps JSON ou un formulaire HTML (champs d'adresse à plat)."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        data: Dict[str, Any] = {
            "shipping_address": {
                "address": form.get("address") or "",
                "city": form.get("city") or "",
                "country": form.get("country") or "",
            },
            "phone_number": form.get("phone_number") or "",
            "payment_method": form.get("payment_method") or "mobile-money",
            "notes": form.get("notes") or "",
            "checkout_key": form.get("checkout_key") or None,
        }
    else:
        try:
            data = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Corps JSON invalide")
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Corps JSON invalide")
    if idempotency_key:
        data["checkout_key"] = idempotency_key
    try:
        return CheckoutRequest.model_validate(data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))


@router.get("")
async def checkout_page(phone_number: Optional[str] = None, ctx: RequestContext = Depends(require_user)):
    return await checkout_service.checkout_summary(ctx, phone_number)


@router.post("", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
async def process_checkout(
    request: Request,
    ctx: RequestContext = Depends(require_user),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    """Valide le panier, réserve le stock, crée la commande et déclenche le paiement mobile money."""
    req = await _read_checkout_request(request, idempotency_key)
    result = await checkout_service.process_checkout(ctx, req)
    if result.replayed:
        status_code = 200
    elif result.status == OrderStatus.PENDING.value:
        status_code = 202
    else:
        status_code = 201
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.get("/payment-pending/{order_id}")
async def payment_pending(order_id: str, ref: str = "", ctx: RequestContext = Depends(require_user)):
    return await checkout_service.payment_pending(ctx, order_id, ref)


@router.post("/webhook/{provider}")
async def payment_webhook(provider: str, request: Request):
    """
    Callback fournisseur (MTN, Airtel).
    - Toujours 200 {"success": true}: l'issue est journalisée par le réconciliateur.
    - Corps non JSON: journalisé puis acquitté.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("checkout.webhook corps non JSON provider=%s", provider)
        payload = None
    outcome = await gateway.process_webhook(provider, payload)
    logger.info("checkout.webhook provider=%s outcome=%s order_id=%s", provider, outcome.outcome.value, outcome.order_id)
    return {"success": True}
