"""
Notifications SMS envoyées au client.

- Confirmation de commande quand le paiement est demandé au fournisseur
- Avis de changement de statut (expédition, livraison, annulation...) par un opérateur

Un envoi raté est journalisé et ignoré: il n'annule jamais l'écriture de la commande.
"""
from typing import Any, Dict, Optional
import logging

import httpx

from marketplace import config
from marketplace.orders.models import Order, OrderStatus
from marketplace.utils.money import format_amount

logger = logging.getLogger(__name__)

STATUS_MESSAGES: Dict[OrderStatus, str] = {
    OrderStatus.PAID: "Paiement reçu pour votre commande #{id}.",
    OrderStatus.SHIPPED: "Votre commande #{id} a été expédiée et est en route.",
    OrderStatus.DELIVERED: "Votre commande #{id} a été livrée.",
    OrderStatus.CANCELLED: "Votre commande #{id} a été annulée.",
    OrderStatus.FAILED: "Le paiement de votre commande #{id} a échoué.",
}


class SmsClient:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender_id: str = "ECommerceRW",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def send(self, phone_number: str, message: str) -> bool:
        """POST {to, message, from}; False si non configuré ou en cas d'erreur (journalisée)."""
        if not self.configured:
            logger.warning("SMS API non configurée, notification ignorée to=%s", phone_number)
            return False
        payload: Dict[str, Any] = {"to": phone_number, "message": message, "from": self.sender_id}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("SMS échec to=%s longueur=%s: %s", phone_number, len(message), e)
            return False
        logger.info("SMS envoyé to=%s: %s", phone_number, message[:50])
        return True


_client: Optional[SmsClient] = None


def get_sms_client() -> SmsClient:
    global _client
    if _client is None:
        _client = SmsClient(
            config.SMS_API_URL,
            config.SMS_API_KEY,
            sender_id=config.SMS_SENDER_ID,
            timeout=config.SMS_TIMEOUT_SECONDS,
        )
    return _client


def register_sms_client(client: SmsClient) -> None:
    global _client
    _client = client


def reset_sms_client() -> None:
    global _client
    _client = None


def order_confirmation_message(order: Order) -> str:
    return (
        f"Commande #{order.id} confirmée. Total: {format_amount(order.total)} {config.PAYMENT_CURRENCY}. "
        f"Validez le paiement sur votre téléphone (réf. {order.payment_reference})."
    )


def status_update_message(order: Order) -> str:
    template = STATUS_MESSAGES.get(order.status, "Votre commande #{id} est maintenant: {status}.")
    return template.format(id=order.id, status=order.status.value)


async def _notify(order: Order, message: str, kind: str) -> bool:
    if not order.phone_number:
        logger.info("notifications.%s order_id=%s sans numéro, ignoré", kind, order.id)
        return False
    try:
        return await get_sms_client().send(order.phone_number, message)
    except Exception:
        logger.exception("notifications.%s failed order_id=%s", kind, order.id)
        return False


async def notify_order_confirmation(order: Order) -> bool:
    return await _notify(order, order_confirmation_message(order), "order_confirmation")


async def notify_status_update(order: Order) -> bool:
    return await _notify(order, status_update_message(order), "status_update")
