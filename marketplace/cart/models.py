from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class CartLine:
    """Ligne de panier résolue sur le produit courant (prix lu à cet instant)."""
    product_id: str
    quantity: int
    unit_price: Decimal
    name: str = ""
    supplier_id: Optional[str] = None
    stock: int = 0

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": f"{self.unit_price:.2f}",
            "subtotal": f"{self.subtotal:.2f}",
        }


@dataclass
class ValidatedCart:
    user_id: str
    lines: List[CartLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [line.to_dict() for line in self.lines],
            "total": f"{self.total:.2f}",
        }
