"""
Réconciliation des notifications fournisseurs (webhooks) et des vérifications manuelles.

handle() ne lève jamais vers l'appelant: chaque cas est journalisé et traduit en
ReconciliationOutcome; le endpoint HTTP acquitte toujours (200) pour stopper les relances.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import logging

from marketplace import config
from marketplace.errors import (
    InvalidStatusTransition,
    MalformedWebhookPayload,
    UnsupportedProvider,
)
from marketplace.orders import service as orders_service
from marketplace.orders.models import Order, OrderStatus
from . import gateway

logger = logging.getLogger(__name__)

# Statuts postérieurs au paiement: un SUCCESS rejoué tardivement ne change rien
PAST_PAID_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


class Outcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    ORDER_NOT_FOUND = "order_not_found"
    INVALID_PAYLOAD = "invalid_payload"
    AMOUNT_MISMATCH = "amount_mismatch"
    REJECTED_TRANSITION = "rejected_transition"
    ERROR = "error"


@dataclass(frozen=True)
class ReconciliationOutcome:
    outcome: Outcome
    order_id: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "order_id": self.order_id,
            "reference": self.reference,
            "status": self.status,
            "detail": self.detail,
        }


async def apply_provider_status(
    order: Order,
    raw_status: str,
    amount: Optional[Decimal] = None,
    source: str = "webhook",
) -> ReconciliationOutcome:
    """
    Applique un statut fournisseur à la commande.
    - Statut non terminal (PENDING...): unchanged
    - Montant notifié différent du total: amount_mismatch, commande inchangée
    - Statut déjà atteint ou dépassé (rejeu d'un SUCCESS après expédition): unchanged, horodatages conservés
    - Transition interdite (ex: paid -> failed): rejected_transition
    """
    target = gateway.map_provider_status(raw_status)
    base = dict(order_id=order.id, reference=order.payment_reference)
    if target is None:
        logger.info("reconciler.%s order_id=%s statut non terminal=%s", source, order.id, raw_status)
        return ReconciliationOutcome(Outcome.UNCHANGED, status=order.status.value, detail=raw_status, **base)

    if amount is not None and amount != order.total:
        logger.error(
            "reconciler.%s amount mismatch order_id=%s notified=%s expected=%s",
            source, order.id, amount, order.total,
        )
        return ReconciliationOutcome(Outcome.AMOUNT_MISMATCH, status=order.status.value, **base)

    if order.status == target:
        logger.info("reconciler.%s rejeu ignoré order_id=%s status=%s", source, order.id, target.value)
        return ReconciliationOutcome(Outcome.UNCHANGED, status=target.value, **base)

    if target == OrderStatus.PAID and order.status in PAST_PAID_STATUSES:
        logger.info("reconciler.%s paiement déjà traité order_id=%s status=%s", source, order.id, order.status.value)
        return ReconciliationOutcome(Outcome.UNCHANGED, status=order.status.value, **base)

    try:
        result = await orders_service.transition_order(order.id, target)
    except InvalidStatusTransition as e:
        logger.warning("reconciler.%s transition refusée order_id=%s: %s", source, order.id, e.detail)
        return ReconciliationOutcome(Outcome.REJECTED_TRANSITION, status=order.status.value, detail=e.detail, **base)

    if result.changed and target == OrderStatus.FAILED and config.RESTOCK_ON_PAYMENT_FAILURE:
        await orders_service.release_order_stock(result.order)

    outcome = Outcome.UPDATED if result.changed else Outcome.UNCHANGED
    logger.info(
        "reconciler.%s order_id=%s %s -> %s (%s)",
        source, order.id, result.previous.value, result.order.status.value, outcome.value,
    )
    return ReconciliationOutcome(outcome, status=result.order.status.value, **base)


async def handle(provider_name: str, raw_payload: Any) -> ReconciliationOutcome:
    """Traite un callback fournisseur. Ne lève jamais."""
    try:
        provider = gateway.get_provider(provider_name)
        notification = provider.parse_webhook(raw_payload)
    except (UnsupportedProvider, MalformedWebhookPayload) as e:
        logger.warning("reconciler.webhook payload rejeté provider=%s: %s", provider_name, e.detail)
        return ReconciliationOutcome(Outcome.INVALID_PAYLOAD, detail=e.detail)

    try:
        order = await orders_service.find_by_payment_reference(notification.reference)
        if order is None:
            logger.warning(
                "reconciler.webhook commande introuvable provider=%s reference=%s",
                provider.name, notification.reference,
            )
            return ReconciliationOutcome(Outcome.ORDER_NOT_FOUND, reference=notification.reference)
        return await apply_provider_status(order, notification.status, notification.amount)
    except Exception as e:
        logger.exception("reconciler.webhook échec provider=%s reference=%s", provider.name, notification.reference)
        return ReconciliationOutcome(Outcome.ERROR, reference=notification.reference, detail=str(e))


async def refresh_payment_status(order_id: str) -> ReconciliationOutcome:
    """
    Vérification manuelle auprès du fournisseur puis même chemin que les webhooks.
    - OrderNotFound si la commande n'existe pas
    - Sans référence de paiement: unchanged (rien à vérifier)
    - Les erreurs du fournisseur (PaymentTimeout, PaymentInitiationFailed) remontent
    """
    order = await orders_service.get_order(order_id)
    if not order.payment_reference or not order.provider:
        return ReconciliationOutcome(Outcome.UNCHANGED, order_id=order.id, status=order.status.value)
    if order.is_terminal or order.status == OrderStatus.PAID:
        return ReconciliationOutcome(
            Outcome.UNCHANGED, order_id=order.id, reference=order.payment_reference, status=order.status.value,
        )
    status = await gateway.check_payment_status(order.transaction_id or order.payment_reference, order.provider)
    return await apply_provider_status(order, status.raw_status, source="refresh")
