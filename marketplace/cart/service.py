"""
Cas d'usage 'cart': lecture, fusion d'articles, mise à jour, vidage et validation avant checkout.
Le store est synchrone (supabase-py): chaque appel est déporté via run_in_threadpool.
"""
from typing import Any, Dict, List
import logging

from starlette.concurrency import run_in_threadpool

from marketplace.catalog import repository as catalog
from marketplace.errors import EmptyCart, InsufficientStock, InvalidQuantity, ProductUnavailable
from marketplace.utils.money import to_decimal
from . import repository
from .models import CartLine, ValidatedCart

logger = logging.getLogger(__name__)

# module marketplace.cart.service
def aggregate_quantities(items: List[Dict[str, Any]]) -> Dict[str, int]:
    """
    Agrège des lignes brutes [{product_id, quantity}, ...] en {product_id: quantité totale}.
    - Ignore les lignes invalides (id vide, quantité <= 0 ou illisible).
    - Garantit l'unicité par produit dans un panier.
    """
    quantities: Dict[str, int] = {}
    for it in items or []:
        product_id = str(it.get("product_id") or "").strip()
        try:
            qty = int(it.get("quantity") or 0)
        except (TypeError, ValueError):
            qty = 0
        if not product_id or qty <= 0:
            continue
        quantities[product_id] = quantities.get(product_id, 0) + qty
    return quantities

def _to_items(quantities: Dict[str, int]) -> List[Dict[str, Any]]:
    return [{"product_id": pid, "quantity": qty} for pid, qty in quantities.items()]

def _is_available(product: Dict[str, Any] | None) -> bool:
    return bool(product) and bool(product.get("approved"))

async def get_quantities(user_id: str) -> Dict[str, int]:
    cart = await run_in_threadpool(repository.get_cart, user_id)
    return aggregate_quantities((cart or {}).get("items") or [])

async def add_item(user_id: str, product_id: str, quantity: int) -> Dict[str, int]:
    """
    Ajoute un produit au panier (création paresseuse du panier).
    - Produit déjà présent: quantités fusionnées.
    - Erreurs: InvalidQuantity (< 1), ProductUnavailable (inconnu ou non approuvé).
    """
    if quantity < 1:
        raise InvalidQuantity("La quantité doit être au moins 1", quantity=quantity)
    product = await run_in_threadpool(catalog.get_product, product_id)
    if not _is_available(product):
        raise ProductUnavailable(product_id)
    quantities = await get_quantities(user_id)
    quantities[str(product_id)] = quantities.get(str(product_id), 0) + quantity
    await run_in_threadpool(repository.save_cart_items, user_id, _to_items(quantities))
    logger.info("cart.add_item user_id=%s product_id=%s quantity=%s", user_id, product_id, quantity)
    return quantities

async def update_quantity(user_id: str, product_id: str, quantity: int) -> Dict[str, int]:
    """
    Fixe la quantité d'une ligne; 0 retire la ligne.
    - Produit absent du panier: vérifié au catalogue comme pour add_item (ProductUnavailable).
    """
    if quantity < 0:
        raise InvalidQuantity("La quantité ne peut pas être négative", quantity=quantity)
    quantities = await get_quantities(user_id)
    if quantity > 0 and str(product_id) not in quantities:
        product = await run_in_threadpool(catalog.get_product, product_id)
        if not _is_available(product):
            raise ProductUnavailable(product_id)
    if quantity == 0:
        quantities.pop(str(product_id), None)
    else:
        quantities[str(product_id)] = quantity
    await run_in_threadpool(repository.save_cart_items, user_id, _to_items(quantities))
    return quantities

async def remove_item(user_id: str, product_id: str) -> Dict[str, int]:
    return await update_quantity(user_id, product_id, 0)

async def clear_cart(user_id: str) -> None:
    await run_in_threadpool(repository.delete_cart, user_id)
    logger.info("cart.clear_cart user_id=%s", user_id)

async def validate_cart(user_id: str) -> ValidatedCart:
    """
    Résout le panier sur les produits courants, sans effet de bord.
    - EmptyCart: panier absent ou sans ligne valide
    - ProductUnavailable: produit supprimé ou non approuvé
    - InsufficientStock: quantité demandée > stock courant
    """
    quantities = await get_quantities(user_id)
    if not quantities:
        raise EmptyCart()
    products = await run_in_threadpool(catalog.get_products_map, list(quantities.keys()))

    lines: List[CartLine] = []
    for product_id, qty in quantities.items():
        product = products.get(product_id)
        if not _is_available(product):
            raise ProductUnavailable(product_id)
        stock = int(product.get("stock") or 0)
        if qty > stock:
            raise InsufficientStock(product_id, requested=qty, available=stock, name=product.get("name") or "")
        lines.append(CartLine(
            product_id=product_id,
            quantity=qty,
            unit_price=to_decimal(product.get("price")),
            name=product.get("name") or "",
            supplier_id=product.get("supplier_id"),
            stock=stock,
        ))
    return ValidatedCart(user_id=user_id, lines=lines)

async def cart_summary(user_id: str) -> Dict[str, Any]:
    """
    Vue du panier pour l'affichage: lignes aux prix courants, sous-totaux, total.
    Les lignes indisponibles restent listées (available=False) mais hors total.
    """
    quantities = await get_quantities(user_id)
    products = await run_in_threadpool(catalog.get_products_map, list(quantities.keys())) if quantities else {}
    items = []
    total = to_decimal(0)
    for product_id, qty in quantities.items():
        product = products.get(product_id) or {}
        available = _is_available(product) and qty <= int(product.get("stock") or 0)
        unit_price = to_decimal(product.get("price"))
        if available:
            total += unit_price * qty
        items.append({
            "product_id": product_id,
            "name": product.get("name") or "",
            "quantity": qty,
            "unit_price": f"{unit_price:.2f}",
            "subtotal": f"{unit_price * qty:.2f}",
            "available": available,
        })
    return {"items": items, "total": f"{total:.2f}", "count": sum(quantities.values())}
