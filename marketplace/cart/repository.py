"""
Accès aux paniers (table 'carts', une ligne par utilisateur, items en jsonb).
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import logging

import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module marketplace.cart.repository
def get_cart(user_id: str) -> Optional[dict]:
    """
    Panier de l'utilisateur: {"user_id", "items": [{"product_id", "quantity"}], "updated_at"}.
    - Retourne None si l'utilisateur n'a pas encore de panier.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("carts")
            .select("user_id, items, updated_at")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("cart.repository.get_cart failed user_id=%s", user_id)
        raise
    rows = res.data or []
    return rows[0] if rows else None

def save_cart_items(user_id: str, items: List[Dict[str, Any]]) -> dict:
    """Crée ou remplace le panier (upsert sur user_id)."""
    row = {
        "user_id": user_id,
        "items": items,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("carts")
            .upsert(row, on_conflict="user_id")
            .execute()
        )
    except Exception:
        logger.exception("cart.repository.save_cart_items failed user_id=%s", user_id)
        raise
    rows = res.data or []
    return rows[0] if rows else row

def delete_cart(user_id: str) -> None:
    try:
        supabase_client.get_service_supabase().table("carts").delete().eq("user_id", user_id).execute()
    except Exception:
        logger.exception("cart.repository.delete_cart failed user_id=%s", user_id)
        raise
