import pytest

from marketplace.errors import InvalidPhoneNumber, UnsupportedProvider
from marketplace.payments.phone import (
    available_providers,
    normalize_phone_number,
    resolve_provider,
    validate_phone_number,
)


@pytest.mark.parametrize("raw", ["0788123456", "788123456", "250788123456", "+250 788 123 456", "+250-788-123-456"])
def test_normalize_mtn_formats(raw):
    assert normalize_phone_number(raw) == "250788123456"


@pytest.mark.parametrize("raw", ["12345", "07881234567", "251788123456", "", "abc"])
def test_normalize_rejects_wrong_digit_count(raw):
    with pytest.raises(InvalidPhoneNumber):
        normalize_phone_number(raw)


def test_resolve_provider_mtn_and_airtel():
    assert resolve_provider("0788123456") == "MTN"
    assert resolve_provider("0783000000") == "MTN"
    assert resolve_provider("0728123456") == "AIRTEL"
    assert resolve_provider("250739123456") == "AIRTEL"


def test_resolve_provider_unknown_prefix():
    # Arrange: 9 chiffres valides, préfixe 700 inconnu
    with pytest.raises(UnsupportedProvider):
        resolve_provider("0700123456")


def test_resolve_provider_wrong_length_is_invalid_number():
    with pytest.raises(InvalidPhoneNumber):
        resolve_provider("078812")


def test_available_providers_and_validation():
    assert available_providers("0788123456") == ["MTN"]
    assert available_providers("0729123456") == ["AIRTEL"]
    assert available_providers("0700123456") == []
    assert available_providers("not a number") == []
    assert validate_phone_number("0788123456") is True
    assert validate_phone_number("0700123456") is False
