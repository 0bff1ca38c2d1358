"""
Daraja Wire Models

Pydantic models for the Safaricom Daraja STK push API: the synchronous
acknowledgment, the status query response, and the asynchronous callback
envelope posted to CallBackURL.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from .payments import PaymentOutcome


class StkPushAcknowledgement(BaseModel):
    """
    Synchronous response to an STK push request.

    ResponseCode "0" means accepted for processing, not completed. The final
    outcome arrives later on the callback.
    """
    merchant_request_id: Optional[str] = Field(None, alias="MerchantRequestID")
    checkout_request_id: Optional[str] = Field(None, alias="CheckoutRequestID")
    response_code: str = Field(alias="ResponseCode")
    response_description: Optional[str] = Field(None, alias="ResponseDescription")
    customer_message: Optional[str] = Field(None, alias="CustomerMessage")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("response_code", mode="before")
    @classmethod
    def coerce_code(cls, v):
        return str(v)

    @property
    def accepted(self) -> bool:
        return self.response_code == "0"


class StkQueryResult(BaseModel):
    """Response of the STK push status query endpoint."""
    response_code: Optional[str] = Field(None, alias="ResponseCode")
    result_code: Optional[str] = Field(None, alias="ResultCode")
    result_desc: Optional[str] = Field(None, alias="ResultDesc")
    checkout_request_id: Optional[str] = Field(None, alias="CheckoutRequestID")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("response_code", "result_code", mode="before")
    @classmethod
    def coerce_code(cls, v):
        return None if v is None else str(v)


class CallbackItem(BaseModel):
    name: str = Field(alias="Name")
    value: Any = Field(None, alias="Value")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class CallbackMetadata(BaseModel):
    items: List[CallbackItem] = Field(default_factory=list, alias="Item")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class StkCallback(BaseModel):
    """
    The stkCallback object inside a Daraja callback body.

    Example payload:
        {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": "ws_CO_191220191020363925",
                    "ResultCode": 0,
                    "ResultDesc": "The service request is processed successfully.",
                    "CallbackMetadata": {"Item": [
                        {"Name": "Amount", "Value": 1.00},
                        {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                        {"Name": "PhoneNumber", "Value": 254708374149}
                    ]}
                }
            }
        }
    """
    merchant_request_id: Optional[str] = Field(None, alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    result_code: str = Field(alias="ResultCode")
    result_desc: Optional[str] = Field(None, alias="ResultDesc")
    metadata: Optional[CallbackMetadata] = Field(None, alias="CallbackMetadata")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("result_code", mode="before")
    @classmethod
    def coerce_code(cls, v):
        return str(v)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StkCallback":
        """
        Extract the stkCallback object from a raw callback body.

        Raises:
            ValueError: payload is not a Daraja STK callback envelope
        """
        if not isinstance(payload, dict):
            raise ValueError("Callback payload must be a JSON object")
        body = payload.get("Body")
        stk = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(stk, dict):
            raise ValueError("Callback payload has no Body.stkCallback")
        return cls.model_validate(stk)

    def metadata_value(self, name: str) -> Any:
        if not self.metadata:
            return None
        for item in self.metadata.items:
            if item.name == name:
                return item.value
        return None

    def to_outcome(self) -> PaymentOutcome:
        receipt = self.metadata_value("MpesaReceiptNumber")
        return PaymentOutcome(
            result_code=self.result_code,
            result_desc=self.result_desc,
            receipt_number=str(receipt) if receipt is not None else None,
        )
