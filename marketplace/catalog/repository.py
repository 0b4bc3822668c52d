"""
Accès au catalogue (table 'products'), collaborateur externe du checkout.
- Lecture: prix, stock, approbation, fournisseur
- Écriture: uniquement le stock, via fonctions Postgres atomiques (sql/schema.sql)
"""
from typing import Any, Dict, Iterable, List, Optional
import logging

import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = "id, name, price, stock, approved, supplier_id"

# module marketplace.catalog.repository
def fetch_products_by_ids(ids: List[str]) -> List[dict]:
    """
    Récupère les produits par leurs IDs.
    - Retourne [] si ids est vide.
    - Les erreurs du store remontent: le checkout ne doit pas confondre panne et produit absent.
    """
    if not ids:
        return []
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select(PRODUCT_FIELDS)
            .in_("id", [str(i) for i in ids])
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("catalog.repository.fetch_products_by_ids failed ids=%s", ids)
        raise

def get_products_map(ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Retourne un dict {id: produit} à partir d'une liste d'IDs."""
    products = fetch_products_by_ids(list(ids))
    return {str(p.get("id")): p for p in products}

def get_product(product_id: str) -> Optional[dict]:
    return get_products_map([product_id]).get(str(product_id))

def reserve_stock(product_id: str, quantity: int) -> bool:
    """
    Décrément conditionnel atomique: stock -= quantity si et seulement si stock >= quantity.
    - Fonction Postgres reserve_stock, un seul UPDATE ... WHERE stock >= quantity.
    - Retourne False si le stock est insuffisant (aucune ligne modifiée).
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .rpc("reserve_stock", {"p_product_id": str(product_id), "p_quantity": int(quantity)})
            .execute()
        )
    except Exception:
        logger.exception("catalog.repository.reserve_stock failed product_id=%s quantity=%s", product_id, quantity)
        raise
    return res.data is not None

def release_stock(product_id: str, quantity: int) -> None:
    """Compensation: remet `quantity` unités en stock (fonction Postgres release_stock)."""
    try:
        (
            supabase_client.get_service_supabase()
            .rpc("release_stock", {"p_product_id": str(product_id), "p_quantity": int(quantity)})
            .execute()
        )
    except Exception:
        logger.exception("catalog.repository.release_stock failed product_id=%s quantity=%s", product_id, quantity)
        raise
