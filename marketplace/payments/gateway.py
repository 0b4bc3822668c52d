"""
Passerelle de paiement mobile money.
- Sélection du fournisseur à partir du numéro (phone.resolve_provider)
- Génération de la référence de paiement (clé de corrélation des webhooks)
- Initiation / vérification du statut via les adaptateurs HTTP (providers)
- Traduction des statuts fournisseur vers les statuts de commande
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import logging
import time
import uuid

from marketplace import config
from marketplace.errors import UnsupportedProvider
from marketplace.orders.models import OrderStatus
from marketplace.utils.money import to_decimal
from .phone import normalize_phone_number, resolve_provider
from .providers import MobileMoneyProvider, PaymentRequest, PROVIDER_CLASSES

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"SUCCESS", "SUCCESSFUL", "COMPLETED", "PAID"})
FAILED_STATUSES = frozenset({"FAILED", "CANCELLED", "REJECTED"})

_providers: Dict[str, MobileMoneyProvider] = {}


@dataclass(frozen=True)
class PaymentInitiation:
    reference: str
    transaction_id: str
    provider: str
    status: str = "PENDING"
    message: str = ""


@dataclass(frozen=True)
class PaymentStatus:
    transaction_id: str
    provider: str
    raw_status: str
    order_status: Optional[OrderStatus]


def _provider_settings(name: str):
    if name == "MTN":
        return config.MTN_API_BASE_URL, config.MTN_API_KEY
    return config.AIRTEL_API_BASE_URL, config.AIRTEL_API_KEY


def get_provider(name: str) -> MobileMoneyProvider:
    """Instance (mise en cache) de l'adaptateur du fournisseur `name` (insensible à la casse)."""
    key = (name or "").strip().upper()
    cls = PROVIDER_CLASSES.get(key)
    if cls is None:
        raise UnsupportedProvider(f"Fournisseur inconnu: {name}", provider=name)
    if key not in _providers:
        base_url, api_key = _provider_settings(key)
        _providers[key] = cls(base_url, api_key, timeout=config.PAYMENT_TIMEOUT_SECONDS)
    return _providers[key]


def register_provider(provider: MobileMoneyProvider) -> None:
    """Remplace l'adaptateur d'un fournisseur (ex: transport httpx simulé)."""
    _providers[provider.name] = provider


def reset_providers() -> None:
    _providers.clear()


def generate_reference() -> str:
    """Référence unique par tentative: ECR + epoch en millisecondes + suffixe aléatoire."""
    return f"ECR{int(time.time() * 1000)}{uuid.uuid4().hex[:8].upper()}"


def callback_url(provider: str) -> str:
    return f"{config.BASE_URL}/api/v1/checkout/webhook/{provider.lower()}"


def map_provider_status(status: Any) -> Optional[OrderStatus]:
    """SUCCESS/SUCCESSFUL/COMPLETED/PAID -> paid, FAILED/CANCELLED/REJECTED -> failed, sinon None."""
    normalized = str(status or "").strip().upper()
    if normalized in PAID_STATUSES:
        return OrderStatus.PAID
    if normalized in FAILED_STATUSES:
        return OrderStatus.FAILED
    return None


async def initiate_payment(
    *,
    phone_number: str,
    amount: Decimal,
    order_id: str,
    description: Optional[str] = None,
    reference: Optional[str] = None,
    provider: Optional[str] = None,
) -> PaymentInitiation:
    """
    Envoie la demande de paiement au fournisseur du numéro.
    - reference: générée si absente (le checkout la génère et la rattache à la commande avant l'appel)
    - Lève PaymentInitiationFailed (refus/transport) ou PaymentTimeout (délai dépassé)
    """
    provider_name = provider or resolve_provider(phone_number)
    adapter = get_provider(provider_name)
    ref = reference or generate_reference()
    request = PaymentRequest(
        phone_number=normalize_phone_number(phone_number),
        amount=to_decimal(amount),
        reference=ref,
        callback_url=callback_url(adapter.name),
        description=description or f"Commande #{order_id}",
        currency=config.PAYMENT_CURRENCY,
    )
    logger.info("payments.initiate order_id=%s provider=%s reference=%s", order_id, adapter.name, ref)
    resp = await adapter.initiate(request)
    return PaymentInitiation(
        reference=ref,
        transaction_id=resp.transaction_id,
        provider=adapter.name,
        status=resp.status,
        message=resp.message,
    )


async def check_payment_status(transaction_id: str, provider: str) -> PaymentStatus:
    adapter = get_provider(provider)
    raw = await adapter.check_status(transaction_id)
    logger.info("payments.check_status provider=%s transaction_id=%s status=%s", adapter.name, transaction_id, raw)
    return PaymentStatus(
        transaction_id=transaction_id,
        provider=adapter.name,
        raw_status=raw,
        order_status=map_provider_status(raw),
    )


def calculate_fees(amount: Any, provider: Optional[str] = None) -> Dict[str, Any]:
    """Frais de transaction (PAYMENT_FEE_RATE, 2 % par défaut), arrondis à l'unité."""
    base = to_decimal(amount)
    fee = (base * config.PAYMENT_FEE_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    rounded = base.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return {
        "amount": int(rounded),
        "fee": int(fee),
        "total": int(rounded + fee),
        "provider": provider,
    }


async def process_webhook(provider: str, payload: Any):
    """Délègue au réconciliateur (n'échoue jamais, retourne un ReconciliationOutcome)."""
    from . import reconciler
    return await reconciler.handle(provider, payload)
