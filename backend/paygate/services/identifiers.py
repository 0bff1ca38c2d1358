"""
Identifier Generator

Opaque random payment ids and human-readable, timestamp-derived references.
"""
import secrets
import string
import time

PAYMENT_ID_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
PAYMENT_ID_LENGTH = 20


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def generate_payment_id(length: int = PAYMENT_ID_LENGTH) -> str:
    """
    Generate an opaque alphanumeric payment id.

    20 characters over a 62-symbol alphabet gives ~119 bits of entropy,
    so collisions are negligible at any realistic request rate.
    """
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(PAYMENT_ID_ALPHABET) for _ in range(length))


def generate_reference(prefix: str = "REF") -> str:
    """Generate a reference label such as REF-1760000000000."""
    return f"{prefix}-{_epoch_millis()}"


def generate_mock_checkout_id() -> str:
    """Generate a CheckoutRequestID for the mock STK endpoint."""
    return f"MOCK_{_epoch_millis()}"
