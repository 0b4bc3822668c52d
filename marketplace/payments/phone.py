"""
Normalisation des numéros rwandais et classification par fournisseur (logique pure, sans I/O).
"""
import re
from typing import List, Tuple, FrozenSet

from marketplace.errors import InvalidPhoneNumber, UnsupportedProvider

COUNTRY_CODE = "250"

# Ordre de priorité: le premier fournisseur dont la table de préfixes correspond est retenu
PROVIDER_PREFIXES: Tuple[Tuple[str, FrozenSet[str]], ...] = (
    ("MTN", frozenset({"788", "789", "782", "783"})),
    ("AIRTEL", frozenset({"728", "729", "738", "739"})),
)

_NON_DIGITS = re.compile(r"\D")

# module marketplace.payments.phone
def normalize_phone_number(phone_number: str) -> str:
    """
    Retourne le numéro au format international complet (250XXXXXXXXX).
    - Supprime tout caractère non numérique (+, espaces, tirets).
    - 10 chiffres commençant par 0 (format national): le 0 est retiré.
    - 9 chiffres: préfixe pays 250 ajouté.
    - 12 chiffres commençant par 250: conservé.
    - Toute autre longueur: InvalidPhoneNumber.
    """
    cleaned = _NON_DIGITS.sub("", phone_number or "")
    if len(cleaned) == 10 and cleaned.startswith("0"):
        cleaned = cleaned[1:]
    if len(cleaned) == 9:
        return COUNTRY_CODE + cleaned
    if len(cleaned) == 12 and cleaned.startswith(COUNTRY_CODE):
        return cleaned
    raise InvalidPhoneNumber(phone_number)

def network_prefix(normalized: str) -> str:
    return normalized[len(COUNTRY_CODE):len(COUNTRY_CODE) + 3]

def available_providers(phone_number: str) -> List[str]:
    """Fournisseurs dont les préfixes correspondent, dans l'ordre de priorité. [] si numéro invalide."""
    try:
        prefix = network_prefix(normalize_phone_number(phone_number))
    except InvalidPhoneNumber:
        return []
    return [name for name, prefixes in PROVIDER_PREFIXES if prefix in prefixes]

def validate_phone_number(phone_number: str) -> bool:
    return bool(available_providers(phone_number))

def resolve_provider(phone_number: str) -> str:
    """
    Choisit le fournisseur du numéro (premier dans l'ordre de priorité).
    - InvalidPhoneNumber: mauvais nombre de chiffres
    - UnsupportedProvider: aucun préfixe reconnu
    """
    normalized = normalize_phone_number(phone_number)
    prefix = network_prefix(normalized)
    for name, prefixes in PROVIDER_PREFIXES:
        if prefix in prefixes:
            return name
    raise UnsupportedProvider(phone_number=normalized, prefix=prefix)
