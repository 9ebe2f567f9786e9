"""Safaricom Daraja (M-Pesa Express / STK push) client.

Only the OAuth token fetch is retried. The STK push itself is sent once:
Daraja takes no idempotency key, so a blind retry could prompt (and
charge) the customer twice.
"""

import base64
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# 07XXXXXXXX / 01XXXXXXXX, optionally as +254 / 254
PHONE_RE = re.compile(r"^(?:\+?254|0)([17]\d{8})$")

# Refresh the token a minute before Daraja says it expires
TOKEN_EXPIRY_MARGIN = 60


class GatewayError(Exception):
    """Talking to Daraja failed: network, HTTP status, or a rejected request."""


class TransientGatewayError(GatewayError):
    """A 5xx from the token endpoint; worth another attempt."""


@dataclass(frozen=True)
class StkPushResult:
    checkout_request_id: str
    merchant_request_id: str | None = None
    customer_message: str | None = None


def normalize_phone(phone: str) -> str:
    digits = re.sub(r"[\s-]", "", phone or "")
    m = PHONE_RE.match(digits)
    if not m:
        raise ValueError("Valid Kenyan phone number required")
    return "254" + m.group(1)


def whole_shillings(amount: Decimal) -> int:
    # STK push only takes whole shillings
    return max(int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 1)


def stk_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


class MpesaClient:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.mpesa_base_url.rstrip("/"),
            timeout=settings.mpesa_timeout,
            transport=transport,
        )
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def callback_url(self) -> str:
        url = self.settings.mpesa_callback_url
        if self.settings.mpesa_callback_token:
            url = str(httpx.URL(url).copy_merge_params({"token": self.settings.mpesa_callback_token}))
        return url

    async def _fetch_token_once(self) -> tuple[str, float]:
        r = await self._client.get(
            TOKEN_PATH,
            params={"grant_type": "client_credentials"},
            auth=(self.settings.mpesa_consumer_key, self.settings.mpesa_consumer_secret),
        )
        if r.status_code >= 500:
            raise TransientGatewayError(f"M-Pesa token endpoint returned {r.status_code}")
        if r.status_code != 200:
            raise GatewayError(f"M-Pesa token endpoint returned {r.status_code}")

        try:
            data = r.json()
            token = data["access_token"]
            expires_in = float(data.get("expires_in", 3599))
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayError("Bad response from M-Pesa token endpoint") from e
        return token, expires_in

    async def get_access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, TransientGatewayError)),
            stop=stop_after_attempt(self.settings.mpesa_token_retries),
            wait=wait_exponential(multiplier=self.settings.mpesa_token_backoff, max=10),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    token, expires_in = await self._fetch_token_once()
        except httpx.TimeoutException as e:
            raise GatewayError("M-Pesa token request timed out") from e
        except httpx.TransportError as e:
            raise GatewayError("M-Pesa token endpoint unavailable") from e

        self._token = token
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        return token

    async def stk_push(
        self,
        phone: str,
        amount: Decimal,
        *,
        account_reference: str | None = None,
        description: str | None = None,
        now: datetime | None = None,
    ) -> StkPushResult:
        token = await self.get_access_token()

        shortcode = self.settings.mpesa_shortcode
        timestamp = stk_timestamp(now)
        payload = {
            "BusinessShortCode": shortcode,
            "Password": stk_password(shortcode, self.settings.mpesa_passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_shillings(amount),
            "PartyA": phone,
            "PartyB": shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": (account_reference or self.settings.mpesa_account_reference)[:12],
            "TransactionDesc": (description or self.settings.mpesa_transaction_desc)[:13],
        }

        try:
            r = await self._client.post(
                STK_PUSH_PATH,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise GatewayError("M-Pesa STK push timed out") from e
        except httpx.RequestError as e:
            raise GatewayError("M-Pesa STK push unavailable") from e

        try:
            data = r.json()
        except ValueError as e:
            raise GatewayError(f"Bad response from M-Pesa STK push ({r.status_code})") from e
        if not isinstance(data, dict):
            raise GatewayError("Bad response from M-Pesa STK push")

        if r.status_code != 200 or str(data.get("ResponseCode")) != "0":
            logger.warning("STK push rejected status=%s body=%s", r.status_code, data)
            raise GatewayError(
                data.get("errorMessage")
                or data.get("ResponseDescription")
                or f"M-Pesa STK push returned {r.status_code}"
            )

        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise GatewayError("M-Pesa STK push response has no CheckoutRequestID")

        logger.info("STK push accepted checkout_request_id=%s amount=%s", checkout_request_id, payload["Amount"])
        return StkPushResult(
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            customer_message=data.get("CustomerMessage"),
        )
