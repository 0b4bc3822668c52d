"""
Module 'payments' (feature-first): point d'entrée public.
Réunit classification des numéros, adaptateurs fournisseurs, passerelle et réconciliation.
"""

from .phone import normalize_phone_number, available_providers, resolve_provider, validate_phone_number
from .providers import MTNMoMoProvider, AirtelMoneyProvider, WebhookNotification
from .gateway import (
    generate_reference,
    initiate_payment,
    check_payment_status,
    map_provider_status,
    calculate_fees,
    process_webhook,
)
from .reconciler import handle, refresh_payment_status

__all__ = [
    # phone
    "normalize_phone_number",
    "available_providers",
    "resolve_provider",
    "validate_phone_number",
    # providers
    "MTNMoMoProvider",
    "AirtelMoneyProvider",
    "WebhookNotification",
    # gateway
    "generate_reference",
    "initiate_payment",
    "check_payment_status",
    "map_provider_status",
    "calculate_fees",
    "process_webhook",
    # reconciler
    "handle",
    "refresh_payment_status",
]
