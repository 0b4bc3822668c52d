"""
Orchestration du checkout mobile money (saga avec compensations).

Étapes:
1) Clé d'idempotence déjà utilisée: on renvoie la commande existante, rien n'est modifié.
2) Validation du panier et du numéro (aucune mutation en cas d'erreur).
3) Réservation du stock (décrément conditionnel atomique par produit).
4) Création de la commande 'pending'; en cas d'échec, libération des réservations.
5) Référence de paiement rattachée à la commande, puis initiation chez le fournisseur:
   - succès: payment_pending, panier vidé, SMS de confirmation (échec d'envoi ignoré)
   - refus, ou webhook FAILED reçu avant payment_pending: failed, panier conservé
     (+ remise en stock si RESTOCK_ON_PAYMENT_FAILURE)
   - timeout: commande laissée pending avec sa référence, panier conservé
"""
from typing import Any, Dict, List, Optional
import logging

from starlette.concurrency import run_in_threadpool

from marketplace import config
from marketplace.cart import service as cart_service
from marketplace.catalog import repository as catalog
from marketplace.errors import (
    InsufficientStock,
    InvalidStatusTransition,
    OrderNotFound,
    OrderPersistenceError,
    PaymentInitiationFailed,
    PaymentTimeout,
    PreconditionError,
)
from marketplace.notifications import service as notifications
from marketplace.orders import service as orders_service
from marketplace.orders.models import Order, OrderItem, OrderStatus, build_new_order_row
from marketplace.payments import gateway
from marketplace.payments.phone import available_providers, normalize_phone_number, resolve_provider
from marketplace.utils.security import RequestContext
from .models import CheckoutRequest, CheckoutResult

logger = logging.getLogger(__name__)


async def _release(items: List[OrderItem]) -> None:
    for item in items:
        try:
            await run_in_threadpool(catalog.release_stock, item.product_id, item.quantity)
        except Exception:
            logger.exception("checkout.release failed product_id=%s quantity=%s", item.product_id, item.quantity)


async def reserve_items(items: List[OrderItem]) -> List[OrderItem]:
    """
    Réserve le stock ligne par ligne.
    - Une réservation refusée libère les lignes déjà réservées puis lève InsufficientStock.
    - Une erreur du store libère aussi les réservations avant de remonter.
    """
    reserved: List[OrderItem] = []
    for item in items:
        try:
            ok = await run_in_threadpool(catalog.reserve_stock, item.product_id, item.quantity)
        except Exception:
            await _release(reserved)
            raise
        if not ok:
            await _release(reserved)
            logger.info("checkout.reserve refusé product_id=%s quantity=%s", item.product_id, item.quantity)
            raise InsufficientStock(item.product_id, item.quantity, name=item.name)
        reserved.append(item)
    return reserved


async def _fail_order(order: Order, reason: str) -> None:
    try:
        result = await orders_service.transition_order(order.id, OrderStatus.FAILED)
    except Exception:
        logger.exception("checkout.fail_order transition failed order_id=%s", order.id)
        return
    if result.changed and config.RESTOCK_ON_PAYMENT_FAILURE:
        await orders_service.release_order_stock(order)
    logger.warning("checkout order_id=%s failed: %s", order.id, reason)


async def _clear_cart(user_id: str) -> None:
    try:
        await cart_service.clear_cart(user_id)
    except Exception:
        logger.exception("checkout.clear_cart failed user_id=%s", user_id)


async def process_checkout(ctx: RequestContext, req: CheckoutRequest) -> CheckoutResult:
    """
    Transforme le panier en commande et déclenche le paiement mobile money.
    Erreurs:
    - EmptyCart, ProductUnavailable, InsufficientStock, InvalidPhoneNumber, UnsupportedProvider (aucune mutation)
    - OrderPersistenceError (réservations libérées)
    - PaymentInitiationFailed (commande failed)
    """
    user_id = ctx.user_id
    existing = await orders_service.find_by_checkout_key(user_id, req.checkout_key)
    if existing:
        logger.info("checkout duplicate checkout_key user_id=%s order_id=%s", user_id, existing.id)
        return CheckoutResult.from_order(existing, message="Commande déjà créée", replayed=True)

    cart = await cart_service.validate_cart(user_id)
    provider = resolve_provider(req.phone_number)
    phone_number = normalize_phone_number(req.phone_number)

    # Prix courants figés dans les lignes de commande
    items = [
        OrderItem(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            name=line.name,
            supplier_id=line.supplier_id,
        )
        for line in cart.lines
    ]
    row = build_new_order_row(
        customer_id=user_id,
        items=items,
        shipping_address=req.shipping_address.model_dump(),
        phone_number=phone_number,
        payment_method=req.payment_method,
        provider=provider,
        notes=req.notes,
        checkout_key=req.checkout_key,
    )

    reserved = await reserve_items(items)

    try:
        order = await orders_service.create_order(row)
    except Exception as e:
        await _release(reserved)
        # Soumission concurrente avec la même clé: la contrainte d'unicité a rejeté la seconde
        duplicate = await orders_service.find_by_checkout_key(user_id, req.checkout_key)
        if duplicate:
            return CheckoutResult.from_order(duplicate, message="Commande déjà créée", replayed=True)
        logger.exception("checkout.create_order failed user_id=%s", user_id)
        raise OrderPersistenceError("Échec de création de la commande", customer_id=user_id) from e

    reference = gateway.generate_reference()
    try:
        order = await orders_service.attach_payment_reference(order.id, reference, provider)
    except Exception as e:
        await _fail_order(order, "référence de paiement non enregistrée")
        raise OrderPersistenceError("Échec d'enregistrement de la référence de paiement", order_id=order.id) from e

    try:
        initiation = await gateway.initiate_payment(
            phone_number=phone_number,
            amount=order.total,
            order_id=order.id,
            description=f"Commande #{order.id}",
            reference=reference,
            provider=provider,
        )
    except PaymentTimeout:
        logger.warning("checkout payment timeout order_id=%s reference=%s: commande laissée pending", order.id, reference)
        return CheckoutResult.from_order(
            order,
            message="Le fournisseur n'a pas répondu à temps. Le statut sera mis à jour à réception de sa notification.",
        )
    except PaymentInitiationFailed as e:
        await _fail_order(order, e.detail)
        raise

    try:
        result = await orders_service.transition_order(
            order.id,
            OrderStatus.PAYMENT_PENDING,
            extra={"transaction_id": initiation.transaction_id},
        )
        order = result.order
    except InvalidStatusTransition:
        # Webhook arrivé avant la fin du checkout: le statut réconcilié prime
        order = await orders_service.get_order(order.id)
        if order.status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
            # Stock déjà remis par le réconciliateur; le panier est conservé
            logger.warning(
                "checkout order_id=%s reference=%s terminé en %s avant payment_pending",
                order.id, reference, order.status.value,
            )
            raise PaymentInitiationFailed("Paiement refusé par le fournisseur", order_id=order.id)

    await _clear_cart(user_id)
    await notifications.notify_order_confirmation(order)
    logger.info(
        "checkout done user_id=%s order_id=%s provider=%s reference=%s total=%s",
        user_id, order.id, provider, reference, order.total,
    )
    return CheckoutResult.from_order(order, message=initiation.message)


async def checkout_summary(ctx: RequestContext, phone_number: Optional[str] = None) -> Dict[str, Any]:
    """Récapitulatif avant paiement: lignes validées, total, fournisseurs du numéro, frais."""
    cart = await cart_service.validate_cart(ctx.user_id)
    providers = available_providers(phone_number) if phone_number else []
    data = cart.to_dict()
    data["providers"] = providers
    data["fees"] = gateway.calculate_fees(cart.total, providers[0] if providers else None)
    return data


async def payment_pending(ctx: RequestContext, order_id: str, reference: str) -> Dict[str, Any]:
    """
    Données de la page 'paiement en attente'.
    - Commande d'un autre client: OrderNotFound (404)
    - Référence différente de celle de la commande: PreconditionError (400)
    """
    order = await orders_service.get_order(order_id)
    if order.customer_id != ctx.user_id and not ctx.is_admin:
        raise OrderNotFound(order_id=order_id)
    if not reference or reference != order.payment_reference:
        raise PreconditionError("Référence de paiement invalide", order_id=order_id)
    return {
        "order": order.to_dict(),
        "payment_reference": order.payment_reference,
        "provider": order.provider,
        "status": order.status.value,
    }
