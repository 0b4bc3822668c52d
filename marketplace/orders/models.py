# module marketplace.orders.models
"""Modèle des commandes et machine à états des statuts.
- Une seule énumération (7 états); l'ancienne variante pending/shipped/delivered n'est pas supportée.
- Les prix des lignes sont figés à la création: total == somme(unit_price * quantity).
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from marketplace.errors import InvariantViolation
from marketplace.utils.money import format_amount, to_decimal


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


TRANSITIONS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PAYMENT_PENDING, OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED,
    }),
    OrderStatus.PAYMENT_PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.FAILED, OrderStatus.CANCELLED})

# Horodatage posé uniquement lors de la transition effective vers ce statut
TIMESTAMP_FIELDS: Mapping[OrderStatus, str] = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def parse_status(value: Any) -> Optional[OrderStatus]:
    try:
        return OrderStatus(str(value or "").strip().lower())
    except ValueError:
        return None


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class OrderItem:
    product_id: str
    quantity: int
    unit_price: Decimal
    name: str = ""
    supplier_id: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_row(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "supplier_id": self.supplier_id,
            "quantity": self.quantity,
            "unit_price": format_amount(self.unit_price),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OrderItem":
        return cls(
            product_id=str(row.get("product_id") or ""),
            quantity=int(row.get("quantity") or 0),
            unit_price=to_decimal(row.get("unit_price")),
            name=row.get("name") or "",
            supplier_id=row.get("supplier_id"),
        )


@dataclass
class Order:
    id: str
    customer_id: str
    items: List[OrderItem]
    total: Decimal
    status: OrderStatus
    shipping_address: Dict[str, str] = field(default_factory=dict)
    phone_number: Optional[str] = None
    payment_method: Optional[str] = None
    provider: Optional[str] = None
    notes: str = ""
    payment_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    checkout_key: Optional[str] = None
    paid_at: Optional[str] = None
    shipped_at: Optional[str] = None
    delivered_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def supplier_ids(self) -> set:
        return {i.supplier_id for i in self.items if i.supplier_id}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        status = parse_status(row.get("status"))
        if status is None:
            raise InvariantViolation(f"Statut de commande inconnu: {row.get('status')!r}", order_id=row.get("id"))
        return cls(
            id=str(row.get("id")),
            customer_id=str(row.get("customer_id") or ""),
            items=[OrderItem.from_row(i) for i in (row.get("items") or [])],
            total=to_decimal(row.get("total")),
            status=status,
            shipping_address=dict(row.get("shipping_address") or {}),
            phone_number=row.get("phone_number"),
            payment_method=row.get("payment_method"),
            provider=row.get("provider"),
            notes=row.get("notes") or "",
            payment_reference=row.get("payment_reference"),
            transaction_id=row.get("transaction_id"),
            checkout_key=row.get("checkout_key"),
            paid_at=row.get("paid_at"),
            shipped_at=row.get("shipped_at"),
            delivered_at=row.get("delivered_at"),
            cancelled_at=row.get("cancelled_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "items": [i.to_row() for i in self.items],
            "total": format_amount(self.total),
            "status": self.status.value,
            "shipping_address": self.shipping_address,
            "phone_number": self.phone_number,
            "payment_method": self.payment_method,
            "provider": self.provider,
            "notes": self.notes,
            "payment_reference": self.payment_reference,
            "transaction_id": self.transaction_id,
            "paid_at": self.paid_at,
            "shipped_at": self.shipped_at,
            "delivered_at": self.delivered_at,
            "cancelled_at": self.cancelled_at,
            "created_at": self.created_at,
        }


REQUIRED_ADDRESS_FIELDS = ("address", "city", "country")


def build_new_order_row(
    *,
    customer_id: str,
    items: List[OrderItem],
    shipping_address: Mapping[str, Any],
    phone_number: str,
    payment_method: str,
    provider: Optional[str] = None,
    notes: str = "",
    checkout_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Construit la ligne 'orders' d'une nouvelle commande (statut pending).
    - Total calculé une seule fois depuis les lignes, contrôlé avant écriture.
    - Adresse de livraison incomplète ou commande vide: InvariantViolation (jamais complétée en silence).
    """
    if not items:
        raise InvariantViolation("Commande sans article")
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not str(shipping_address.get(f) or "").strip()]
    if missing:
        raise InvariantViolation(f"Adresse de livraison incomplète: {', '.join(missing)}")
    item_rows = [i.to_row() for i in items]
    total = sum((OrderItem.from_row(r).subtotal for r in item_rows), Decimal("0"))
    row = {
        "customer_id": customer_id,
        "items": item_rows,
        "total": format_amount(total),
        "status": OrderStatus.PENDING.value,
        "shipping_address": {f: str(shipping_address.get(f)).strip() for f in REQUIRED_ADDRESS_FIELDS},
        "phone_number": phone_number,
        "payment_method": payment_method,
        "provider": provider,
        "notes": notes or "",
    }
    if checkout_key:
        row["checkout_key"] = checkout_key
    check_total(row)
    return row


def check_total(row: Mapping[str, Any]) -> None:
    items = [OrderItem.from_row(i) for i in (row.get("items") or [])]
    expected = sum((i.subtotal for i in items), Decimal("0"))
    if to_decimal(row.get("total")) != expected:
        raise InvariantViolation(
            f"Total incohérent: {row.get('total')} != {expected}", order_id=row.get("id"),
        )
