import base64
import json

import httpx
import pytest

from paygate.exceptions import AuthenticationError, PushFailedError
from paygate.services.daraja_client import (
    PRODUCTION_BASE_URL,
    SANDBOX_BASE_URL,
    STK_PUSH_PATH,
    STK_QUERY_PATH,
    DarajaEndpoints,
    build_password,
    build_timestamp,
)


def test_endpoints_follow_environment():
    sandbox = DarajaEndpoints.for_environment(sandbox=True)
    production = DarajaEndpoints.for_environment(sandbox=False)

    assert sandbox.auth == f"{SANDBOX_BASE_URL}/oauth/v1/generate?grant_type=client_credentials"
    assert sandbox.stk_push == f"{SANDBOX_BASE_URL}/mpesa/stkpush/v1/processrequest"
    assert production.stk_push.startswith(PRODUCTION_BASE_URL)
    assert production.stk_query == f"{PRODUCTION_BASE_URL}/mpesa/stkpushquery/v1/query"


def test_password_is_base64_of_shortcode_passkey_timestamp():
    password = build_password("174379", "passkey", "20251017143500")
    assert base64.b64decode(password).decode() == "174379passkey20251017143500"


@pytest.mark.asyncio
async def test_stk_push_sends_signed_request(fake_daraja):
    client = fake_daraja.daraja_client()

    ack = await client.stk_push("254712345678", 100)

    assert ack.accepted
    assert ack.checkout_request_id == "ws_CO_1"

    auth_request = fake_daraja.requests_to("/oauth/v1/generate")[0]
    expected_basic = base64.b64encode(b"key:secret").decode()
    assert auth_request.headers["Authorization"] == f"Basic {expected_basic}"

    push_request = fake_daraja.requests_to(STK_PUSH_PATH)[0]
    assert push_request.headers["Authorization"] == "Bearer test-token"
    payload = json.loads(push_request.content)
    assert payload == {
        "BusinessShortCode": "174379",
        "Password": build_password("174379", "passkey", "20251017143500"),
        "Timestamp": "20251017143500",
        "TransactionType": "CustomerBuyGoodsOnline",
        "Amount": 100,
        "PartyA": "254712345678",
        "PartyB": "174379",
        "PhoneNumber": "254712345678",
        "CallBackURL": "https://example.com/callback",
        "AccountReference": "HELB Disbursement",
        "TransactionDesc": "HELB Disbursement",
    }
    await client.aclose()


@pytest.mark.asyncio
async def test_access_token_is_cached_between_pushes(fake_daraja):
    client = fake_daraja.daraja_client()

    await client.stk_push("254712345678", 10)
    await client.stk_push("254712345678", 20)

    assert len(fake_daraja.requests_to("/oauth/v1/generate")) == 1
    assert len(fake_daraja.requests_to(STK_PUSH_PATH)) == 2
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_access_token_raises_authentication_error(fake_daraja):
    fake_daraja.token = None
    client = fake_daraja.daraja_client()

    with pytest.raises(AuthenticationError) as exc_info:
        await client.stk_push("254712345678", 10)

    assert exc_info.value.message == "Authentication failed: Failed to obtain access token"
    assert fake_daraja.requests_to(STK_PUSH_PATH) == []
    await client.aclose()


@pytest.mark.asyncio
async def test_oauth_http_error_uses_provider_message(fake_daraja):
    fake_daraja.auth_status = 400
    fake_daraja.auth_body = {"errorCode": "400.008.01", "errorMessage": "Invalid Authentication passed"}
    client = fake_daraja.daraja_client()

    with pytest.raises(AuthenticationError) as exc_info:
        await client.get_access_token()

    assert exc_info.value.message == "Authentication failed: Invalid Authentication passed"
    assert exc_info.value.status_code == 500
    await client.aclose()


@pytest.mark.asyncio
async def test_rejected_push_prefers_provider_description(fake_daraja):
    fake_daraja.push_body = {
        "MerchantRequestID": "29115-1",
        "CheckoutRequestID": "ws_CO_1",
        "ResponseCode": 1,
        "ResponseDescription": "Unable to lock subscriber",
    }
    client = fake_daraja.daraja_client()

    with pytest.raises(PushFailedError) as exc_info:
        await client.stk_push("254712345678", 10)

    assert exc_info.value.message == "Unable to lock subscriber"
    assert exc_info.value.details == {"response_code": "1"}
    await client.aclose()


@pytest.mark.asyncio
async def test_push_http_error_is_wrapped(fake_daraja):
    fake_daraja.push_status = 500
    fake_daraja.push_body = {"errorMessage": "Internal Server Error"}
    client = fake_daraja.daraja_client()

    with pytest.raises(PushFailedError) as exc_info:
        await client.stk_push("254712345678", 10)

    assert exc_info.value.message == "STK push failed: Internal Server Error"
    assert exc_info.value.details["http_status"] == 500
    await client.aclose()


@pytest.mark.asyncio
async def test_push_transport_error_is_wrapped(fake_daraja):
    fake_daraja.push_error = httpx.ConnectError("connection refused")
    client = fake_daraja.daraja_client()

    with pytest.raises(PushFailedError) as exc_info:
        await client.stk_push("254712345678", 10)

    assert exc_info.value.message.startswith("STK push failed:")
    await client.aclose()


@pytest.mark.asyncio
async def test_malformed_push_response_is_wrapped(fake_daraja):
    fake_daraja.push_body = {"unexpected": True}
    client = fake_daraja.daraja_client()

    with pytest.raises(PushFailedError) as exc_info:
        await client.stk_push("254712345678", 10)

    assert exc_info.value.message == "STK push failed: unexpected provider response"
    await client.aclose()


@pytest.mark.asyncio
async def test_query_stk_status(fake_daraja):
    fake_daraja.query_body = {"ResponseCode": "0", "ResultCode": 1032, "ResultDesc": "Request cancelled by user"}
    client = fake_daraja.daraja_client()

    result = await client.query_stk_status("ws_CO_9")

    assert result.result_code == "1032"
    assert result.checkout_request_id == "ws_CO_9"
    payload = json.loads(fake_daraja.requests_to(STK_QUERY_PATH)[0].content)
    assert payload["CheckoutRequestID"] == "ws_CO_9"
    assert payload["Timestamp"] == build_timestamp(client._now())
    await client.aclose()
