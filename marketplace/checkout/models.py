from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from marketplace.orders.models import Order, OrderStatus
from marketplace.utils.money import format_amount


class ShippingAddress(BaseModel):
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    country: str = Field(min_length=1)

    @field_validator("address", "city", "country")
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Champ obligatoire")
        return v


class CheckoutRequest(BaseModel):
    shipping_address: ShippingAddress
    phone_number: str = Field(min_length=1)
    payment_method: str = "mobile-money"
    notes: str = ""
    checkout_key: Optional[str] = Field(default=None, max_length=128)

    @field_validator("payment_method")
    def mobile_money_only(cls, v: str) -> str:
        if v != "mobile-money":
            raise ValueError("Seul le paiement mobile-money est accepté")
        return v


def pending_url(order_id: str, reference: Optional[str]) -> str:
    return f"/api/v1/checkout/payment-pending/{order_id}?ref={reference or ''}"


# Commande abandonnée: la tentative de checkout n'a pas abouti
UNSUCCESSFUL_STATUSES = frozenset({OrderStatus.FAILED.value, OrderStatus.CANCELLED.value})


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    payment_reference: Optional[str]
    provider: Optional[str]
    status: str
    total: Decimal
    message: str = ""
    replayed: bool = False

    @property
    def pending_url(self) -> str:
        return pending_url(self.order_id, self.payment_reference)

    @classmethod
    def from_order(cls, order: Order, message: str = "", replayed: bool = False) -> "CheckoutResult":
        return cls(
            order_id=order.id,
            payment_reference=order.payment_reference,
            provider=order.provider,
            status=order.status.value,
            total=order.total,
            message=message,
            replayed=replayed,
        )

    @property
    def success(self) -> bool:
        return self.status not in UNSUCCESSFUL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "order_id": self.order_id,
            "payment_reference": self.payment_reference,
            "provider": self.provider,
            "status": self.status,
            "total": format_amount(self.total),
            "pending_url": self.pending_url,
            "message": self.message,
        }
