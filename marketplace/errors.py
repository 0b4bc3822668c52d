"""
Exceptions métier du checkout et de la réconciliation des paiements.

Chaque exception porte son code HTTP et un code stable (`code`) renvoyé au client.
Les vues les laissent remonter; app_setup.exceptions les convertit en JSON.

- PreconditionError: entrée utilisateur invalide, aucune mutation effectuée
- IntegrationError: fournisseur ou store en échec, la commande reste persistée
- ReconciliationError: webhook inexploitable, journalisé et acquitté
- InvariantViolation: bug de programmation, 500 sans coercition
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str = "", **context: Any):
        super().__init__(detail or self.code)
        self.detail = detail or self.code
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "code": self.code}


# --- Préconditions (4xx, aucune mutation) ---

class PreconditionError(MarketplaceError):
    status_code = 400
    code = "precondition_failed"


class EmptyCart(PreconditionError):
    code = "empty_cart"

    def __init__(self, detail: str = "Panier vide", **context: Any):
        super().__init__(detail, **context)


class InsufficientStock(PreconditionError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, requested: int, available: Optional[int] = None, name: str = ""):
        label = name or product_id
        super().__init__(
            f"Stock insuffisant pour {label}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id


class ProductUnavailable(PreconditionError):
    status_code = 409
    code = "product_unavailable"

    def __init__(self, product_id: str):
        super().__init__(f"Produit indisponible: {product_id}", product_id=product_id)
        self.product_id = product_id


class InvalidQuantity(PreconditionError):
    code = "invalid_quantity"


class InvalidPhoneNumber(PreconditionError):
    code = "invalid_phone_number"

    def __init__(self, phone_number: str = ""):
        super().__init__("Format de numéro de téléphone invalide", phone_number=phone_number)


class UnsupportedProvider(PreconditionError):
    code = "unsupported_provider"

    def __init__(self, detail: str = "Numéro non pris en charge par un fournisseur mobile money", **context: Any):
        super().__init__(detail, **context)


# --- Intégration (fournisseur / store) ---

class IntegrationError(MarketplaceError):
    status_code = 502
    code = "integration_error"


class PaymentInitiationFailed(IntegrationError):
    code = "payment_initiation_failed"


class PaymentTimeout(IntegrationError):
    status_code = 504
    code = "payment_timeout"


class OrderPersistenceError(IntegrationError):
    status_code = 500
    code = "order_persistence_failed"


# --- Réconciliation (webhooks) ---

class ReconciliationError(MarketplaceError):
    status_code = 400
    code = "reconciliation_error"


class OrderNotFound(ReconciliationError):
    status_code = 404
    code = "order_not_found"

    def __init__(self, detail: str = "Commande introuvable", **context: Any):
        super().__init__(detail, **context)


class MalformedWebhookPayload(ReconciliationError):
    code = "malformed_webhook_payload"


# --- Machine à états des commandes ---

class InvalidStatusTransition(MarketplaceError):
    status_code = 409
    code = "invalid_status_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Transition interdite: {current} -> {target}", current=current, target=target)
        self.current = current
        self.target = target


# --- Invariants ---

class InvariantViolation(MarketplaceError):
    status_code = 500
    code = "invariant_violation"


class AccessDenied(MarketplaceError):
    status_code = 403
    code = "access_denied"

    def __init__(self, detail: str = "Accès interdit", **context: Any):
        super().__init__(detail, **context)
