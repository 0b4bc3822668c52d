"""Couche service des commandes.
Rôles:
- Créer/relire une commande et rattacher sa référence de paiement (posée une seule fois).
- Appliquer les transitions de statut de façon idempotente (compare-and-set, horodatage unique).
- Mises à jour opérateur (fournisseur/admin) avec contrôle d'accès; l'override des états terminaux
  est réservé aux admins.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from starlette.concurrency import run_in_threadpool

from marketplace.catalog import repository as catalog
from marketplace.errors import AccessDenied, InvalidStatusTransition, InvariantViolation, OrderNotFound
from marketplace.notifications import service as notifications
from marketplace.utils.security import RequestContext
from . import repository
from .models import TIMESTAMP_FIELDS, Order, OrderStatus, can_transition

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 3

# Statuts qu'un fournisseur peut poser sur une commande contenant ses produits
SUPPLIER_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED})


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    changed: bool
    previous: OrderStatus


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def get_order(order_id: str) -> Order:
    row = await run_in_threadpool(repository.get_order, order_id)
    if not row:
        raise OrderNotFound(order_id=order_id)
    return Order.from_row(row)


async def find_by_payment_reference(reference: str) -> Optional[Order]:
    row = await run_in_threadpool(repository.find_by_payment_reference, reference)
    return Order.from_row(row) if row else None


async def find_by_checkout_key(customer_id: str, checkout_key: Optional[str]) -> Optional[Order]:
    if not checkout_key:
        return None
    row = await run_in_threadpool(repository.find_by_checkout_key, customer_id, checkout_key)
    return Order.from_row(row) if row else None


async def create_order(row: Dict[str, Any]) -> Order:
    created = await run_in_threadpool(repository.insert_order, row)
    order = Order.from_row(created)
    logger.info("orders.create_order id=%s customer_id=%s total=%s", order.id, order.customer_id, order.total)
    return order


async def attach_payment_reference(order_id: str, reference: str, provider: Optional[str] = None) -> Order:
    """
    Rattache la référence de paiement à la commande (set-once).
    - Ré-appliquer la même référence est sans effet.
    - Une référence différente déjà posée est une violation d'invariant.
    """
    row = await run_in_threadpool(repository.set_payment_reference, order_id, reference, provider)
    if row:
        return Order.from_row(row)
    order = await get_order(order_id)
    if order.payment_reference != reference:
        raise InvariantViolation(
            "Référence de paiement déjà attribuée",
            order_id=order_id,
            existing=order.payment_reference,
        )
    return order


async def transition_order(
    order_id: str,
    target: OrderStatus,
    *,
    force: bool = False,
    extra: Optional[Dict[str, Any]] = None,
) -> TransitionResult:
    """
    Applique la transition `target` sur la commande.
    - Statut déjà atteint: succès sans écriture (les horodatages existants sont conservés).
    - Transition non autorisée: InvalidStatusTransition, sauf force=True (override admin).
    - Écriture conditionnelle sur le statut lu; en cas de course perdue, relecture et réévaluation.
    """
    for _ in range(MAX_CAS_ATTEMPTS):
        order = await get_order(order_id)
        current = order.status
        if current == target:
            return TransitionResult(order=order, changed=False, previous=current)
        if not force and not can_transition(current, target):
            raise InvalidStatusTransition(current.value, target.value)

        data: Dict[str, Any] = dict(extra or {})
        data["status"] = target.value
        ts_field = TIMESTAMP_FIELDS.get(target)
        if ts_field and not getattr(order, ts_field):
            data[ts_field] = _now()

        row = await run_in_threadpool(repository.update_status_if, order_id, current.value, data)
        if row:
            updated = Order.from_row(row)
            logger.info("orders.transition id=%s %s -> %s force=%s", order_id, current.value, target.value, force)
            return TransitionResult(order=updated, changed=True, previous=current)
        logger.info("orders.transition id=%s statut modifié concurremment, nouvelle tentative", order_id)

    latest = await get_order(order_id)
    if latest.status == target:
        return TransitionResult(order=latest, changed=False, previous=latest.status)
    raise InvalidStatusTransition(latest.status.value, target.value)


async def release_order_stock(order: Order) -> None:
    """Remet en stock les quantités d'une commande abandonnée (échec de paiement)."""
    for item in order.items:
        try:
            await run_in_threadpool(catalog.release_stock, item.product_id, item.quantity)
        except Exception:
            logger.exception(
                "orders.release_order_stock failed order_id=%s product_id=%s quantity=%s",
                order.id, item.product_id, item.quantity,
            )


def _can_view(ctx: RequestContext, order: Order) -> bool:
    return ctx.is_admin or order.customer_id == ctx.user_id or (ctx.is_supplier and ctx.user_id in order.supplier_ids())


async def get_order_for(ctx: RequestContext, order_id: str) -> Order:
    """Commande visible par le client propriétaire, un fournisseur concerné ou un admin; sinon 404."""
    order = await get_order(order_id)
    if not _can_view(ctx, order):
        raise OrderNotFound(order_id=order_id)
    return order


async def update_status_by_operator(
    ctx: RequestContext,
    order_id: str,
    status: OrderStatus,
    force: bool = False,
) -> Order:
    """
    Mise à jour de statut déclenchée par un fournisseur ou un admin.
    - Fournisseur: uniquement sur une commande contenant ses produits, statuts expédition/livraison/annulation.
    - force (sortie d'un état terminal) réservé aux admins.
    """
    order = await get_order(order_id)
    if not ctx.is_admin:
        if not ctx.is_supplier or ctx.user_id not in order.supplier_ids():
            raise AccessDenied("Cette commande ne contient aucun de vos produits", order_id=order_id)
        if status not in SUPPLIER_STATUSES:
            raise AccessDenied(f"Statut réservé aux administrateurs: {status.value}", order_id=order_id)
        if force:
            raise AccessDenied("Override réservé aux administrateurs", order_id=order_id)
    result = await transition_order(order_id, status, force=force and ctx.is_admin)
    if result.changed:
        logger.info(
            "orders.status_update id=%s by=%s role=%s %s -> %s",
            order_id, ctx.user_id, ctx.role, result.previous.value, status.value,
        )
        await notifications.notify_status_update(result.order)
    return result.order


async def list_orders_for(ctx: RequestContext, limit: int = 50) -> List[Order]:
    rows = await run_in_threadpool(repository.list_customer_orders, ctx.user_id, limit)
    return [Order.from_row(r) for r in rows]


async def list_supplier_orders(ctx: RequestContext, limit: int = 100) -> List[Order]:
    if ctx.is_admin:
        rows = await run_in_threadpool(repository.list_all_orders, limit)
    else:
        rows = await run_in_threadpool(repository.list_supplier_orders, ctx.user_id, limit)
    return [Order.from_row(r) for r in rows]
