"""
Validation Service

Checks raw amount and phone fields before a payment is created.

Two profiles:
- GENERIC: any positive amount, phone of 7-15 digits with optional leading +
- PROVIDER: Daraja STK push rules, 1-150,000 whole-shilling amounts and
  2547XXXXXXXX phone numbers

All violated rules are collected and raised together as one ValidationError.
"""
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from ..exceptions import ValidationError


class ValidationProfile(str, Enum):
    GENERIC = "generic"
    PROVIDER = "provider"


# re.ASCII: \d must not match non-ASCII digits such as Arabic-Indic numerals
GENERIC_PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$", re.ASCII)
PROVIDER_PHONE_PATTERN = re.compile(r"^2547\d{8}$", re.ASCII)

PROVIDER_MIN_AMOUNT = 1
PROVIDER_MAX_AMOUNT = 150_000

GENERIC_AMOUNT_ERROR = "Amount must be a positive number."
GENERIC_PHONE_ERROR = "Phone must be digits, optionally starting with +, length 7–15."
PROVIDER_AMOUNT_ERROR = "Invalid amount. Must be between 1 and 150,000"
PROVIDER_PHONE_ERROR = "Invalid phone format. Use format: 2547XXXXXXXX"
MISSING_AMOUNT_ERROR = "Amount is required."
MISSING_PHONE_ERROR = "Phone is required."


@dataclass(frozen=True)
class ValidatedPayment:
    amount: Union[int, float]
    phone: str


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_amount(value: Any) -> Optional[float]:
    """
    Parse an untyped amount into a finite float.

    Returns None for anything that is not a number or numeric string.
    Booleans are rejected even though bool is an int subclass, and so are
    strings with non-ASCII digits (float() would accept them).
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        if not value.isascii():
            return None
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def validate_amount(
    value: Any,
    profile: ValidationProfile = ValidationProfile.GENERIC,
) -> Tuple[Optional[Union[int, float]], List[str]]:
    """
    Validate an amount under the given profile.

    Returns:
        (normalized amount or None, list of errors)
    """
    if _is_missing(value):
        return None, [MISSING_AMOUNT_ERROR]

    number = parse_amount(value)

    if profile == ValidationProfile.PROVIDER:
        if number is None or not PROVIDER_MIN_AMOUNT <= number <= PROVIDER_MAX_AMOUNT:
            return None, [PROVIDER_AMOUNT_ERROR]
        # Daraja only accepts whole shillings
        return int(number), []

    if number is None or number <= 0:
        return None, [GENERIC_AMOUNT_ERROR]
    return (int(number) if number.is_integer() else number), []


def validate_phone(
    value: Any,
    profile: ValidationProfile = ValidationProfile.GENERIC,
) -> Tuple[Optional[str], List[str]]:
    """
    Validate a phone number under the given profile.

    Returns:
        (phone string or None, list of errors)
    """
    if _is_missing(value):
        return None, [MISSING_PHONE_ERROR]
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        phone = None
    else:
        phone = str(value).strip()

    pattern = PROVIDER_PHONE_PATTERN if profile == ValidationProfile.PROVIDER else GENERIC_PHONE_PATTERN
    if phone is None or not pattern.match(phone):
        error = PROVIDER_PHONE_ERROR if profile == ValidationProfile.PROVIDER else GENERIC_PHONE_ERROR
        return None, [error]
    return phone, []


def validate_payment_input(
    amount: Any,
    phone: Any,
    profile: ValidationProfile = ValidationProfile.GENERIC,
) -> ValidatedPayment:
    """
    Validate both payment fields and collect every violation.

    Args:
        amount: Raw amount from the request body
        phone: Raw phone from the request body
        profile: Validation profile to apply

    Returns:
        ValidatedPayment with normalized values

    Raises:
        ValidationError: one or more rules failed (all are listed)
    """
    normalized_amount, amount_errors = validate_amount(amount, profile)
    normalized_phone, phone_errors = validate_phone(phone, profile)

    errors = amount_errors + phone_errors
    if errors:
        raise ValidationError(errors, {"profile": ValidationProfile(profile).value})

    return ValidatedPayment(amount=normalized_amount, phone=normalized_phone)
