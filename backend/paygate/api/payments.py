"""
Payments API Endpoints

Generic intake and status polling:

    POST /api/pay                        create a PENDING payment
    GET  /api/status/{payment_id}        current record
    POST /api/status/{payment_id}/refresh  ask the provider for the outcome

Errors are raised as PaymentGatewayError subclasses and rendered by the
handlers in main.py.
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from typing import Any, Dict, Optional
import logging

from ..services.payment_tracker import PaymentTracker

logger = logging.getLogger(__name__)

router = APIRouter()


class PaymentRequest(BaseModel):
    """
    Intake body.

    amount and phone are untyped so that every rule violation is reported
    by the gateway's own validation instead of a framework type error.
    """
    amount: Any = None
    phone: Any = None
    reference: Optional[str] = None


def get_tracker(request: Request) -> PaymentTracker:
    return request.app.state.tracker


@router.post("/pay")
async def initiate_payment_endpoint(
    body: Optional[PaymentRequest] = None,
    tracker: PaymentTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    """
    Accept a payment request.

    Request Body:
        {"amount": number, "phone": str, "reference"?: str}

    Returns:
        {"ok": true, "payment": Payment} with status PENDING

    Example:
        POST /api/pay {"amount": 250, "phone": "+254712345678"}
    """
    body = body or PaymentRequest()
    payment = await tracker.initiate(body.amount, body.phone, body.reference)
    return {"ok": True, "payment": payment.to_response()}


@router.get("/status/{payment_id}")
async def get_status_endpoint(
    payment_id: str,
    tracker: PaymentTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    """
    Get the current record for a payment.

    Returns:
        {"ok": true, "payment": Payment}, or 404 {"ok": false, "error": "Not found"}
    """
    logger.debug(f"Status lookup: {payment_id}")
    payment = await tracker.get_status(payment_id)
    return {"ok": True, "payment": payment.to_response()}


@router.post("/status/{payment_id}/refresh")
async def refresh_status_endpoint(
    payment_id: str,
    tracker: PaymentTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    """Query the provider for a PENDING payment and return the updated record."""
    payment = await tracker.refresh_status(payment_id)
    return {"ok": True, "payment": payment.to_response()}
