"""
Adaptateurs HTTP des fournisseurs mobile money (ensemble fermé, une interface commune).

Chaque fournisseur expose:
- initiate(request): "request to pay" (X-Reference-Id = référence de paiement, callback URL)
- check_status(transaction_id): statut brut côté fournisseur (polling manuel)
- parse_webhook(payload): extrait {reference, status, amount} d'un callback

Les appels sortants passent par httpx.AsyncClient avec un timeout borné.
Un timeout lève PaymentTimeout (pas une preuve d'échec); un refus lève PaymentInitiationFailed.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
import logging

import httpx

from marketplace.errors import MalformedWebhookPayload, PaymentInitiationFailed, PaymentTimeout
from marketplace.utils.money import format_amount, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentRequest:
    phone_number: str
    amount: Decimal
    reference: str
    callback_url: str
    description: str = ""
    currency: str = "RWF"


@dataclass(frozen=True)
class ProviderResponse:
    transaction_id: str
    status: str = "PENDING"
    message: str = ""


@dataclass(frozen=True)
class WebhookNotification:
    reference: str
    status: str
    amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None


class MobileMoneyProvider:
    name = ""
    initiate_path = ""
    status_path = ""
    reference_keys = ("reference", "transactionId")
    status_keys = ("status", "paymentStatus")
    # Vocabulaire fournisseur -> vocabulaire commun (SUCCESS, FAILED, PENDING...)
    status_aliases: Mapping[str, str] = {}

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self.transport,
        )

    def build_payload(self, request: PaymentRequest) -> Dict[str, Any]:
        return {
            "phoneNumber": request.phone_number,
            "amount": format_amount(request.amount),
            "reference": request.reference,
            "callbackUrl": request.callback_url,
            "currency": request.currency,
            "description": request.description,
        }

    def normalize_status(self, raw: Any) -> str:
        status = str(raw or "").strip().upper()
        return self.status_aliases.get(status, status)

    async def initiate(self, request: PaymentRequest) -> ProviderResponse:
        try:
            async with self._client() as client:
                resp = await client.post(
                    self.initiate_path,
                    json=self.build_payload(request),
                    headers={"X-Reference-Id": request.reference},
                )
                resp.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("%s payment timeout reference=%s: %s", self.name, request.reference, e)
            raise PaymentTimeout(f"{self.name}: délai dépassé", reference=request.reference, provider=self.name)
        except httpx.HTTPStatusError as e:
            logger.error(
                "%s payment rejected reference=%s status=%s",
                self.name, request.reference, e.response.status_code,
            )
            raise PaymentInitiationFailed(
                f"{self.name}: paiement refusé ({e.response.status_code})",
                reference=request.reference,
                provider=self.name,
            )
        except httpx.HTTPError as e:
            logger.error("%s payment failed reference=%s: %s", self.name, request.reference, e)
            raise PaymentInitiationFailed(f"{self.name}: {e}", reference=request.reference, provider=self.name)

        data = self._json(resp)
        transaction_id = str(data.get("transactionId") or request.reference)
        logger.info("%s payment initiated: %s - %s %s", self.name, request.reference, request.amount, request.currency)
        return ProviderResponse(
            transaction_id=transaction_id,
            status=self.normalize_status(data.get("status") or "PENDING"),
            message="Demande de paiement envoyée sur le téléphone du client",
        )

    async def check_status(self, transaction_id: str) -> str:
        """Statut brut normalisé (SUCCESS, FAILED, PENDING...) pour une transaction."""
        try:
            async with self._client() as client:
                resp = await client.get(self.status_path.format(transaction_id=transaction_id))
                resp.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("%s status check timeout transaction_id=%s", self.name, transaction_id)
            raise PaymentTimeout(f"{self.name}: délai dépassé", transaction_id=transaction_id) from e
        except httpx.HTTPError as e:
            logger.error("%s status check failed transaction_id=%s: %s", self.name, transaction_id, e)
            raise PaymentInitiationFailed(f"{self.name}: vérification impossible", transaction_id=transaction_id) from e
        return self.normalize_status(self._extract_status(self._json(resp)))

    def parse_webhook(self, payload: Any) -> WebhookNotification:
        """
        Extrait {reference, status, amount} d'un callback.
        - MalformedWebhookPayload si le corps n'est pas un objet ou si référence/statut manquent.
        """
        if not isinstance(payload, Mapping):
            raise MalformedWebhookPayload("Payload webhook non JSON objet", provider=self.name)
        reference = self._first(payload, self.reference_keys)
        status = self._extract_status(payload)
        if not reference or not status:
            raise MalformedWebhookPayload("Référence ou statut manquant", provider=self.name)
        amount = payload.get("amount")
        return WebhookNotification(
            reference=str(reference),
            status=self.normalize_status(status),
            amount=to_decimal(amount) if amount not in (None, "") else None,
            transaction_id=payload.get("transactionId") or payload.get("financialTransactionId"),
        )

    def _extract_status(self, data: Mapping[str, Any]) -> Any:
        return self._first(data, self.status_keys)

    @staticmethod
    def _first(data: Mapping[str, Any], keys) -> Any:
        for key in keys:
            value = data.get(key)
            if value not in (None, ""):
                return value
        return None

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


class MTNMoMoProvider(MobileMoneyProvider):
    name = "MTN"
    initiate_path = "/collection/v1_0/requesttopay"
    status_path = "/collection/v1_0/requesttopay/{transaction_id}"
    reference_keys = ("referenceId", "externalId", "reference", "transactionId")
    status_aliases = {"SUCCESSFUL": "SUCCESS"}


class AirtelMoneyProvider(MobileMoneyProvider):
    name = "AIRTEL"
    initiate_path = "/payment/v1/merchant/pay"
    status_path = "/payment/v1/status/{transaction_id}"
    # Codes de statut Airtel: TS (succès), TF (échec), TA/TIP (en cours)
    status_aliases = {"TS": "SUCCESS", "TF": "FAILED", "TA": "PENDING", "TIP": "PENDING"}
    status_keys = ("status", "paymentStatus", "status_code")

    def parse_webhook(self, payload: Any) -> WebhookNotification:
        # Callback Airtel: {"transaction": {"id", "status_code", "airtel_money_id", ...}}
        if isinstance(payload, Mapping) and isinstance(payload.get("transaction"), Mapping):
            txn = payload["transaction"]
            flat = {
                "reference": txn.get("id"),
                "status": txn.get("status_code") or txn.get("status"),
                "amount": txn.get("amount", payload.get("amount")),
                "transactionId": txn.get("airtel_money_id"),
            }
            return super().parse_webhook(flat)
        return super().parse_webhook(payload)

    def _extract_status(self, data: Mapping[str, Any]) -> Any:
        nested = data.get("data")
        if isinstance(nested, Mapping) and isinstance(nested.get("transaction"), Mapping):
            return self._first(nested["transaction"], self.status_keys)
        return super()._extract_status(data)


PROVIDER_CLASSES = {
    MTNMoMoProvider.name: MTNMoMoProvider,
    AirtelMoneyProvider.name: AirtelMoneyProvider,
}
