"""
Mock Daraja Sandbox

Simulates Daraja STK push acknowledgments and result callbacks without
contacting Safaricom. Backs the /mock_stk endpoint and lets tests build
realistic callback bodies.

Test phone numbers that trigger specific results in build_callback_payload
when no explicit result code is given.
"""
import hashlib
from typing import Any, Dict, Optional, Union
from datetime import datetime

from ..services.identifiers import generate_mock_checkout_id


# Phones that produce a specific non-success ResultCode
DECLINE_PHONES = {
    "254700000001": ("1", "The balance is insufficient for the transaction."),
    "254700001032": ("1032", "Request cancelled by user."),
    "254700001037": ("1037", "DS timeout user cannot be reached."),
    "254700002001": ("2001", "The initiator information is invalid."),
}

SUCCESS_DESC = "The service request is processed successfully."


def simulate_stk_push(phone: str, amount: Union[int, float]) -> Dict[str, Any]:
    """
    Produce an accepted STK push acknowledgment.

    Returns:
        Daraja-shaped acknowledgment with a MOCK_<ms> CheckoutRequestID and
        ResponseCode "0"
    """
    checkout_id = generate_mock_checkout_id()
    merchant_hash = hashlib.sha256(f"{checkout_id}:{phone}:{amount}".encode()).hexdigest()
    return {
        "MerchantRequestID": f"mock-{merchant_hash[:10]}",
        "CheckoutRequestID": checkout_id,
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    }


def mock_receipt_number(checkout_request_id: str) -> str:
    """Deterministic 10-character receipt for a checkout id."""
    return hashlib.sha256(checkout_request_id.encode()).hexdigest()[:10].upper()


def build_callback_payload(
    checkout_request_id: str,
    amount: Union[int, float],
    phone: str,
    result_code: Optional[Union[int, str]] = None,
    result_desc: Optional[str] = None,
    merchant_request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the body Daraja posts to CallBackURL.

    Args:
        checkout_request_id: CheckoutRequestID from the acknowledgment
        amount: Amount that was pushed
        phone: Payer MSISDN
        result_code: Explicit ResultCode; defaults from DECLINE_PHONES or 0
        result_desc: Explicit ResultDesc
        merchant_request_id: MerchantRequestID from the acknowledgment

    Returns:
        Callback envelope; CallbackMetadata is only present on success
    """
    if result_code is None:
        code, desc = DECLINE_PHONES.get(phone, ("0", SUCCESS_DESC))
    else:
        code, desc = str(result_code), SUCCESS_DESC if str(result_code) == "0" else "Transaction failed"

    stk_callback: Dict[str, Any] = {
        "MerchantRequestID": merchant_request_id or f"mock-{checkout_request_id[-10:]}",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": int(code),
        "ResultDesc": result_desc or desc,
    }

    if code == "0":
        stk_callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": mock_receipt_number(checkout_request_id)},
                {"Name": "TransactionDate", "Value": int(datetime.now().strftime("%Y%m%d%H%M%S"))},
                {"Name": "PhoneNumber", "Value": int(phone) if phone.isdigit() else phone},
            ]
        }

    return {"Body": {"stkCallback": stk_callback}}
