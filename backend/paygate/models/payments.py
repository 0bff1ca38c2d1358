"""
Pydantic Payment Model

Represents a tracked payment from intake to its terminal provider outcome.
Records are immutable; every transition returns a new record that the store
swaps in atomically.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field, model_validator

from ..exceptions import InvalidTransitionError


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(BaseModel):
    """
    Payment record.

    Invariants:
    - status moves PENDING -> SUCCESS | FAILED exactly once
    - completed_at is set if and only if status is terminal
    - id, amount, phone, reference and created_at never change
    """
    id: str = Field(min_length=1)
    amount: Union[int, float] = Field(gt=0)
    phone: str
    reference: str
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    provider_reference: Optional[str] = Field(None, alias="providerReference")
    merchant_request_id: Optional[str] = Field(None, alias="merchantRequestId")
    result_code: Optional[str] = Field(None, alias="resultCode")
    result_desc: Optional[str] = Field(None, alias="resultDesc")
    receipt_number: Optional[str] = Field(None, alias="receiptNumber")

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "id": "Xq3kP0aZ7mB2cD9eF1gH",
                "amount": 100,
                "phone": "254712345678",
                "reference": "REF-1760000000000",
                "status": "PENDING",
                "createdAt": "2025-10-17T14:35:00Z"
            }
        }
    }

    @model_validator(mode="after")
    def completed_at_matches_status(self) -> "Payment":
        if self.is_terminal and self.completed_at is None:
            raise ValueError("completed_at is required once a payment is terminal")
        if not self.is_terminal and self.completed_at is not None:
            raise ValueError("completed_at must be empty while a payment is pending")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def complete(
        self,
        status: PaymentStatus,
        result_code: Optional[str] = None,
        result_desc: Optional[str] = None,
        receipt_number: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> "Payment":
        """
        Return a copy of this payment moved to a terminal status.

        Raises:
            InvalidTransitionError: payment is already terminal, or status
                is not a terminal status
        """
        if status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"{status.value} is not a terminal status",
                {"id": self.id},
            )
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Payment {self.id} is already {self.status.value}",
                {"id": self.id, "status": self.status.value},
            )

        update: Dict[str, Any] = {
            "status": status,
            "completed_at": completed_at or utcnow(),
        }
        if result_code is not None:
            update["result_code"] = result_code
        if result_desc is not None:
            update["result_desc"] = result_desc
        if receipt_number is not None:
            update["receipt_number"] = receipt_number
        return self.model_copy(update=update)

    def with_provider_reference(
        self,
        provider_reference: str,
        merchant_request_id: Optional[str] = None,
    ) -> "Payment":
        """Return a copy correlated to the provider's CheckoutRequestID."""
        if self.provider_reference and self.provider_reference != provider_reference:
            raise InvalidTransitionError(
                f"Payment {self.id} is already linked to {self.provider_reference}",
                {"id": self.id},
            )
        return self.model_copy(update={
            "provider_reference": provider_reference,
            "merchant_request_id": merchant_request_id or self.merchant_request_id,
        })

    def to_response(self) -> Dict[str, Any]:
        """Serialize for API responses (camelCase, unset optionals omitted)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PaymentOutcome(BaseModel):
    """Final result reported by the provider for a pushed payment."""
    result_code: str
    result_desc: Optional[str] = None
    receipt_number: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == "0"

    @property
    def status(self) -> PaymentStatus:
        return PaymentStatus.SUCCESS if self.succeeded else PaymentStatus.FAILED
