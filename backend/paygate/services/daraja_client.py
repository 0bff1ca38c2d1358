"""
Daraja Provider Client

Talks to the Safaricom Daraja API for Lipa na M-Pesa Online (STK push):

    GET  /oauth/v1/generate?grant_type=client_credentials   (Basic auth)
    POST /mpesa/stkpush/v1/processrequest                   (push request)
    POST /mpesa/stkpushquery/v1/query                       (status query)

Push and query requests are signed with
Password = base64(shortcode + passkey + timestamp), timestamp YYYYMMDDHHMMSS.

Transport and provider errors never leave this module unwrapped: token
failures raise AuthenticationError, push/query failures raise PushFailedError.
"""
import base64
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings
from ..exceptions import AuthenticationError, PushFailedError
from ..models.daraja import StkPushAcknowledgement, StkQueryResult

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"

AUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

# Refresh cached tokens this many seconds before the provider expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class DarajaEndpoints:
    """Endpoint URLs for one Daraja environment, resolved once at startup."""
    base_url: str
    auth: str
    stk_push: str
    stk_query: str

    @classmethod
    def for_environment(cls, sandbox: bool) -> "DarajaEndpoints":
        base_url = SANDBOX_BASE_URL if sandbox else PRODUCTION_BASE_URL
        return cls(
            base_url=base_url,
            auth=f"{base_url}{AUTH_PATH}",
            stk_push=f"{base_url}{STK_PUSH_PATH}",
            stk_query=f"{base_url}{STK_QUERY_PATH}",
        )


def build_timestamp(now: datetime) -> str:
    return now.strftime("%Y%m%d%H%M%S")


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("utf-8")


def basic_auth_header(consumer_key: str, consumer_secret: str) -> str:
    credentials = f"{consumer_key}:{consumer_secret}".encode("utf-8")
    return f"Basic {base64.b64encode(credentials).decode('utf-8')}"


def _provider_error_message(response: httpx.Response) -> Optional[str]:
    """Pull Daraja's errorMessage out of an error response body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("errorMessage") or body.get("ResponseDescription")
    return None


class DarajaClient:
    """
    Async Daraja API client.

    Args:
        consumer_key / consumer_secret: App credentials for OAuth
        shortcode: Business shortcode (also PartyB)
        passkey: Lipa na M-Pesa Online passkey
        callback_url: URL Daraja posts the final result to
        account_reference: Default AccountReference
        transaction_desc: Default TransactionDesc
        transaction_type: CustomerBuyGoodsOnline or CustomerPayBillOnline
        sandbox: Use sandbox endpoints
        http_client: Optional pre-built httpx.AsyncClient (tests inject a MockTransport)
        now: Clock used for request timestamps
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        account_reference: str,
        transaction_desc: str,
        transaction_type: str = "CustomerBuyGoodsOnline",
        sandbox: bool = False,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = str(shortcode)
        self.passkey = passkey
        self.callback_url = callback_url
        self.account_reference = account_reference
        self.transaction_desc = transaction_desc
        self.transaction_type = transaction_type
        self.endpoints = DarajaEndpoints.for_environment(sandbox)

        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._now = now
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "DarajaClient":
        return cls(
            consumer_key=settings.consumer_key or "",
            consumer_secret=settings.consumer_secret or "",
            shortcode=settings.shortcode,
            passkey=settings.passkey or "",
            callback_url=settings.resolved_callback_url,
            account_reference=settings.account_ref,
            transaction_desc=settings.transaction_desc,
            transaction_type=settings.transaction_type,
            sandbox=settings.sandbox,
            timeout_seconds=settings.http_timeout_seconds,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def get_access_token(self) -> str:
        """
        Exchange consumer key/secret for a bearer token.

        Tokens are cached until shortly before their expires_in.

        Raises:
            AuthenticationError: no access_token in the response, or the
                HTTP call failed
        """
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        headers = {
            "Authorization": basic_auth_header(self.consumer_key, self.consumer_secret),
            "Content-Type": "application/json",
        }
        try:
            response = await self._http.get(self.endpoints.auth, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            message = _provider_error_message(e.response) or str(e)
            logger.error(f"Error getting access token: {message}")
            raise AuthenticationError(f"Authentication failed: {message}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error getting access token: {e}")
            raise AuthenticationError(f"Authentication failed: {e}") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            logger.error("OAuth response did not contain an access_token")
            raise AuthenticationError("Authentication failed: Failed to obtain access token")

        try:
            expires_in = float(data.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0.0
        self._access_token = token
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
        return token

    def _signed_fields(self) -> Dict[str, str]:
        timestamp = build_timestamp(self._now())
        return {
            "BusinessShortCode": self.shortcode,
            "Password": build_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
        }

    async def _post(self, url: str, payload: Dict[str, Any], failure_prefix: str) -> Any:
        token = await self.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._http.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            message = _provider_error_message(e.response) or str(e)
            logger.error(f"{failure_prefix}: {message}")
            raise PushFailedError(
                f"{failure_prefix}: {message}",
                {"http_status": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{failure_prefix}: {e}")
            raise PushFailedError(f"{failure_prefix}: {e}") from e

    # ------------------------------------------------------------------
    # STK Push
    # ------------------------------------------------------------------

    async def stk_push(
        self,
        phone: str,
        amount: Union[int, float],
        account_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StkPushAcknowledgement:
        """
        Submit an STK push request.

        Args:
            phone: Payer MSISDN (2547XXXXXXXX)
            amount: Whole-shilling amount
            account_reference: Overrides the configured AccountReference
            description: Overrides the configured TransactionDesc

        Returns:
            Accepted acknowledgment (ResponseCode "0"); completion arrives
            later on the callback

        Raises:
            AuthenticationError: token acquisition failed
            PushFailedError: non-zero ResponseCode or transport failure
        """
        payload = {
            **self._signed_fields(),
            "TransactionType": self.transaction_type,
            "Amount": int(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference or self.account_reference,
            "TransactionDesc": description or self.transaction_desc,
        }

        data = await self._post(self.endpoints.stk_push, payload, "STK push failed")

        try:
            ack = StkPushAcknowledgement.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Unexpected STK push response: {data}")
            raise PushFailedError("STK push failed: unexpected provider response", {"response": data}) from e

        if not ack.accepted:
            logger.warning(
                f"STK push rejected: code={ack.response_code}, desc={ack.response_description}"
            )
            raise PushFailedError(
                ack.response_description or "STK push failed",
                {"response_code": ack.response_code},
            )

        logger.info(f"STK push accepted: checkout_id={ack.checkout_request_id}")
        return ack

    async def query_stk_status(self, checkout_request_id: str) -> StkQueryResult:
        """
        Query the outcome of a previously accepted STK push.

        Raises:
            AuthenticationError: token acquisition failed
            PushFailedError: transport failure or unexpected response
        """
        payload = {
            **self._signed_fields(),
            "CheckoutRequestID": checkout_request_id,
        }

        data = await self._post(self.endpoints.stk_query, payload, "STK query failed")

        try:
            return StkQueryResult.model_validate(data)
        except PydanticValidationError as e:
            raise PushFailedError("STK query failed: unexpected provider response", {"response": data}) from e
