import pytest

from paygate.exceptions import ValidationError
from paygate.services.validation import (
    GENERIC_AMOUNT_ERROR,
    GENERIC_PHONE_ERROR,
    MISSING_AMOUNT_ERROR,
    MISSING_PHONE_ERROR,
    PROVIDER_AMOUNT_ERROR,
    PROVIDER_PHONE_ERROR,
    ValidationProfile,
    parse_amount,
    validate_amount,
    validate_payment_input,
    validate_phone,
)

GENERIC = ValidationProfile.GENERIC
PROVIDER = ValidationProfile.PROVIDER


def test_provider_phone_accepts_safaricom_msisdn():
    assert validate_phone("254712345678", PROVIDER) == ("254712345678", [])


def test_local_format_rejected_by_provider_profile():
    assert validate_phone("071234567", PROVIDER) == (None, [PROVIDER_PHONE_ERROR])


def test_plus_prefix_allowed_only_by_generic_profile():
    assert validate_phone("+254712345678", GENERIC) == ("+254712345678", [])
    assert validate_phone("+254712345678", PROVIDER) == (None, [PROVIDER_PHONE_ERROR])


def test_generic_phone_length_bounds():
    assert validate_phone("1234567", GENERIC)[1] == []
    assert validate_phone("123456789012345", GENERIC)[1] == []
    assert validate_phone("123456", GENERIC)[1] == [GENERIC_PHONE_ERROR]
    assert validate_phone("1234567890123456", GENERIC)[1] == [GENERIC_PHONE_ERROR]
    assert validate_phone("12 345 678", GENERIC)[1] == [GENERIC_PHONE_ERROR]


def test_numeric_phone_is_normalized_to_string():
    assert validate_phone(254712345678, PROVIDER) == ("254712345678", [])


@pytest.mark.parametrize("amount", [0, -5, "abc", 150001, 0.5])
def test_provider_amount_rejections(amount):
    assert validate_amount(amount, PROVIDER) == (None, [PROVIDER_AMOUNT_ERROR])


def test_provider_amount_bounds_inclusive():
    assert validate_amount(150000, PROVIDER) == (150000, [])
    assert validate_amount(1, PROVIDER) == (1, [])


def test_provider_amount_truncated_to_whole_shillings():
    assert validate_amount(100.7, PROVIDER) == (100, [])
    assert validate_amount("250", PROVIDER) == (250, [])


def test_generic_amount_has_no_upper_bound():
    assert validate_amount(150001, GENERIC) == (150001, [])


@pytest.mark.parametrize("amount", [0, -1, "abc", True, float("nan"), float("inf"), [10]])
def test_generic_amount_rejections(amount):
    assert validate_amount(amount, GENERIC) == (None, [GENERIC_AMOUNT_ERROR])


def test_generic_amount_keeps_fractions_and_normalizes_integral_values():
    assert validate_amount(12.5, GENERIC) == (12.5, [])
    assert validate_amount("40.0", GENERIC) == (40, [])


def test_parse_amount():
    assert parse_amount(" 12 ") == 12.0
    assert parse_amount(False) is None
    assert parse_amount(None) is None


def test_missing_fields_reported():
    assert validate_amount(None) == (None, [MISSING_AMOUNT_ERROR])
    assert validate_phone("   ") == (None, [MISSING_PHONE_ERROR])


def test_validate_payment_input_collects_all_violations():
    with pytest.raises(ValidationError) as exc_info:
        validate_payment_input(0, "abc", GENERIC)

    error = exc_info.value
    assert error.errors == [GENERIC_AMOUNT_ERROR, GENERIC_PHONE_ERROR]
    assert error.status_code == 400
    body = error.to_dict()
    assert body["ok"] is False
    assert body["errors"] == [GENERIC_AMOUNT_ERROR, GENERIC_PHONE_ERROR]
    assert body["details"] == {"profile": "generic"}


def test_validate_payment_input_returns_normalized_values():
    validated = validate_payment_input("100", "254712345678", PROVIDER)
    assert validated.amount == 100
    assert validated.phone == "254712345678"


@pytest.mark.parametrize("phone", ["2547١٢٣٤٥٦٧٨", "25471２345678"])
def test_non_ascii_digits_rejected_by_provider_profile(phone):
    assert validate_phone(phone, PROVIDER) == (None, [PROVIDER_PHONE_ERROR])


def test_non_ascii_digits_rejected_by_generic_profile():
    assert validate_phone("+٢٥٤٧١٢٣٤٥٦٧٨", GENERIC) == (None, [GENERIC_PHONE_ERROR])


def test_non_ascii_digit_amount_rejected():
    assert parse_amount("١٠٠") is None
    assert validate_amount("١٠٠", PROVIDER) == (None, [PROVIDER_AMOUNT_ERROR])


def test_non_ascii_phone_never_reaches_validated_payment():
    with pytest.raises(ValidationError) as exc_info:
        validate_payment_input(10, "2547١٢٣٤٥٦٧٨", PROVIDER)
    assert exc_info.value.errors == [PROVIDER_PHONE_ERROR]
