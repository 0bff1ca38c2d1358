"""
Daraja API Endpoints

Provider-facing surface, kept at the root path the way Daraja integrations
expect it:

    POST /stk_push   validated STK push, returns the CheckoutRequestID
    POST /callback   Daraja result callback; always acknowledged with HTTP 200
    POST /mock_stk   simulated STK push for local testing
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from typing import Any, Dict, Optional
import asyncio
import json
import logging

from ..config import Settings
from ..mocks.daraja_sandbox import simulate_stk_push
from ..services.audit_log import AuditLog
from ..services.payment_tracker import PaymentTracker
from .payments import get_tracker

logger = logging.getLogger(__name__)

router = APIRouter()

CALLBACK_ACCEPTED = {"ResultCode": 0, "ResultDesc": "Callback received successfully"}
CALLBACK_FAILED = {"ResultCode": 1, "ResultDesc": "Error processing callback"}


class StkPushRequest(BaseModel):
    phone: Any = None
    amount: Any = None


def get_audit_log(request: Request) -> AuditLog:
    return request.app.state.audit_log


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.post("/stk_push")
async def stk_push_endpoint(
    body: Optional[StkPushRequest] = None,
    tracker: PaymentTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    """
    Send an STK push to the payer's phone.

    Request Body:
        {"phone": "2547XXXXXXXX", "amount": 1..150000}

    Returns:
        {
            "ok": true,
            "checkout_id": str,
            "response_code": "0",
            "message": str,
            "payment_id": str
        }

    Errors:
        400 on invalid phone/amount, 500 on authentication or push failure
    """
    body = body or StkPushRequest()
    logger.info(f"STK push request: phone={body.phone}, amount={body.amount}")

    payment, ack = await tracker.push_payment(body.phone, body.amount)

    return {
        "ok": True,
        "checkout_id": ack.checkout_request_id,
        "response_code": ack.response_code,
        "message": "STK push initiated successfully",
        "payment_id": payment.id,
    }


@router.post("/callback")
async def callback_endpoint(
    request: Request,
    tracker: PaymentTracker = Depends(get_tracker),
    audit_log: AuditLog = Depends(get_audit_log),
) -> Dict[str, Any]:
    """
    Receive the final STK push result from Daraja.

    The provider retries on non-200 responses, so every outcome (including
    unparseable bodies) is answered with HTTP 200 and a ResultCode in the
    body: 0 when processed, 1 when processing failed.
    """
    try:
        raw = await request.body()
        try:
            payload = json.loads(raw)
        except ValueError:
            # Unparseable bodies are still audited, as text
            payload = raw.decode("utf-8", errors="replace")

        audit_log.write("callback", {
            "ip": request.client.host if request.client else None,
            "data": payload,
        })
        await tracker.reconcile_callback(payload)
    except Exception as e:
        # Any failure is reported in the body; the status code stays 200
        logger.error(f"Callback error: {e}", exc_info=True)
        return CALLBACK_FAILED

    return CALLBACK_ACCEPTED


@router.post("/mock_stk")
async def mock_stk_endpoint(
    body: Optional[StkPushRequest] = None,
    audit_log: AuditLog = Depends(get_audit_log),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """
    Simulated STK push.

    Waits mock_delay_seconds, then returns an accepted acknowledgment with a
    MOCK_<ms> checkout id. Nothing is stored and no provider is contacted.
    """
    body = body or StkPushRequest()
    audit_log.write("mock", {"phone": body.phone, "amount": body.amount})

    await asyncio.sleep(settings.mock_delay_seconds)
    ack = simulate_stk_push(str(body.phone), body.amount)

    return {
        "ok": True,
        "checkout_id": ack["CheckoutRequestID"],
        "response_code": ack["ResponseCode"],
        "message": "Mock STK push initiated successfully",
    }
