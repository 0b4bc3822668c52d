"""
Accès aux commandes (table 'orders').
- Écritures via le client service-role.
- Les mises à jour de statut sont conditionnelles (compare-and-set sur le statut attendu).
- payment_reference n'est posé que si la colonne est encore nulle (jamais réassigné).
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import logging

import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

ORDER_FIELDS = "*"

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def _first(res) -> Optional[dict]:
    rows = getattr(res, "data", None) or []
    if isinstance(rows, list):
        return rows[0] if rows else None
    return rows or None

# module marketplace.orders.repository
def insert_order(row: Dict[str, Any]) -> dict:
    """Insère une commande et retourne la ligne créée (avec id). Les erreurs remontent."""
    data = dict(row)
    data.setdefault("created_at", _now())
    data["updated_at"] = data["created_at"]
    try:
        res = supabase_client.get_service_supabase().table("orders").insert(data).execute()
    except Exception:
        logger.exception("orders.repository.insert_order failed customer_id=%s", row.get("customer_id"))
        raise
    created = _first(res)
    if not created or not created.get("id"):
        raise RuntimeError("insert_order: aucune ligne retournée")
    return created

def get_order(order_id: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_FIELDS)
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.get_order failed id=%s", order_id)
        raise
    return _first(res)

def find_by_payment_reference(reference: str) -> Optional[dict]:
    """Clé de corrélation des webhooks fournisseurs."""
    if not reference:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_FIELDS)
            .eq("payment_reference", reference)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.find_by_payment_reference failed reference=%s", reference)
        raise
    return _first(res)

def find_by_checkout_key(customer_id: str, checkout_key: str) -> Optional[dict]:
    """Commande déjà créée pour cette clé d'idempotence (soumission répétée du client)."""
    if not checkout_key:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_FIELDS)
            .eq("customer_id", customer_id)
            .eq("checkout_key", checkout_key)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.find_by_checkout_key failed customer_id=%s", customer_id)
        raise
    return _first(res)

def set_payment_reference(order_id: str, reference: str, provider: Optional[str] = None) -> Optional[dict]:
    """
    Pose la référence de paiement si elle est encore nulle.
    - Retourne la ligne mise à jour, ou None si une référence existait déjà.
    """
    data: Dict[str, Any] = {"payment_reference": reference, "updated_at": _now()}
    if provider:
        data["provider"] = provider
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .update(data)
            .eq("id", order_id)
            .is_("payment_reference", "null")
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.set_payment_reference failed id=%s", order_id)
        raise
    return _first(res)

def update_status_if(order_id: str, expected_status: str, data: Dict[str, Any]) -> Optional[dict]:
    """
    Mise à jour conditionnelle: n'écrit que si le statut courant vaut expected_status.
    - Retourne la ligne mise à jour, ou None si le statut a changé entre-temps.
    """
    payload = dict(data)
    payload["updated_at"] = _now()
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .update(payload)
            .eq("id", order_id)
            .eq("status", expected_status)
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.update_status_if failed id=%s expected=%s", order_id, expected_status)
        raise
    return _first(res)

def list_customer_orders(customer_id: str, limit: int = 50) -> List[dict]:
    """Historique du client, plus récentes d'abord. Retourne [] en cas d'erreur."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_FIELDS)
            .eq("customer_id", customer_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_customer_orders failed customer_id=%s", customer_id)
        return []

def list_supplier_orders(supplier_id: str, limit: int = 100) -> List[dict]:
    """Commandes contenant au moins un produit du fournisseur (items @> [{"supplier_id": ...}])."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_FIELDS)
            .contains("items", [{"supplier_id": supplier_id}])
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_supplier_orders failed supplier_id=%s", supplier_id)
        return []

def list_all_orders(limit: int = 100) -> List[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_FIELDS)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_all_orders failed")
        return []
