import base64
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from storefront.mpesa import (
    GatewayError,
    MpesaClient,
    normalize_phone,
    stk_password,
    stk_timestamp,
    whole_shillings,
)


@pytest.fixture
def mpesa(settings, gateway):
    return MpesaClient(settings, transport=httpx.MockTransport(gateway))


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("0712345678", "254712345678"),
        ("0112345678", "254112345678"),
        ("254712345678", "254712345678"),
        ("+254712345678", "254712345678"),
        ("0712-345-678", "254712345678"),
        (" 0712 345 678 ", "254712345678"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["", "0712", "0612345678", "25471234567", "07123456789", "+44 7700 900123"])
def test_normalize_phone_rejects(raw):
    with pytest.raises(ValueError, match="Kenyan"):
        normalize_phone(raw)


def test_stk_password_and_timestamp():
    ts = stk_timestamp(datetime(2026, 10, 19, 9, 5, 3, tzinfo=timezone.utc))
    assert ts == "20261019090503"
    password = stk_password("174379", "passkey", ts)
    assert base64.b64decode(password).decode() == "174379passkey20261019090503"


@pytest.mark.parametrize(
    "amount,expected",
    [(Decimal("200"), 200), (Decimal("49.50"), 50), (Decimal("49.49"), 49), (Decimal("0.20"), 1)],
)
def test_whole_shillings(amount, expected):
    assert whole_shillings(amount) == expected


@pytest.mark.asyncio
async def test_access_token_is_cached(mpesa, gateway):
    assert await mpesa.get_access_token() == "sandbox-token"
    assert await mpesa.get_access_token() == "sandbox-token"
    assert len(gateway.token_calls()) == 1

    (req,) = gateway.token_calls()
    assert req.url.params["grant_type"] == "client_credentials"
    expected = base64.b64encode(b"consumer-key:consumer-secret").decode()
    assert req.headers["Authorization"] == f"Basic {expected}"
    await mpesa.aclose()


@pytest.mark.asyncio
async def test_token_rejection_is_not_retried(mpesa, gateway):
    gateway.token_status = 401
    with pytest.raises(GatewayError, match="401"):
        await mpesa.get_access_token()
    assert len(gateway.token_calls()) == 1
    await mpesa.aclose()


@pytest.mark.asyncio
async def test_token_retries_exhausted(mpesa, gateway):
    gateway.token_failures = 5
    with pytest.raises(GatewayError):
        await mpesa.get_access_token()
    assert len(gateway.token_calls()) == 3
    await mpesa.aclose()


@pytest.mark.asyncio
async def test_stk_push_payload(mpesa, gateway):
    now = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
    result = await mpesa.stk_push(
        "254712345678", Decimal("1200.00"), description="Order 42 for Jane", now=now
    )
    assert result.checkout_request_id == "ws_CO_1910202612000001"
    assert result.merchant_request_id == "29115-3462-1"

    sent = json.loads(gateway.stk_calls()[0].content)
    assert sent == {
        "BusinessShortCode": "174379",
        "Password": stk_password("174379", "passkey", "20261019120000"),
        "Timestamp": "20261019120000",
        "TransactionType": "CustomerPayBillOnline",
        "Amount": 1200,
        "PartyA": "254712345678",
        "PartyB": "174379",
        "PhoneNumber": "254712345678",
        "CallBackURL": "https://shop.test/payments/callback",
        "AccountReference": "MamaZulekha",
        "TransactionDesc": "Order 42 for ",
    }
    await mpesa.aclose()


@pytest.mark.asyncio
async def test_stk_push_rejected_by_gateway(mpesa, gateway):
    gateway.stk_body = {"ResponseCode": "1", "ResponseDescription": "Rejected"}
    with pytest.raises(GatewayError, match="Rejected"):
        await mpesa.stk_push("254712345678", Decimal("10"))
    await mpesa.aclose()


@pytest.mark.asyncio
async def test_stk_push_without_checkout_id(mpesa, gateway):
    gateway.stk_body = {"ResponseCode": "0"}
    with pytest.raises(GatewayError, match="CheckoutRequestID"):
        await mpesa.stk_push("254712345678", Decimal("10"))
    await mpesa.aclose()


@pytest.mark.asyncio
async def test_stk_push_connection_error_is_sent_once(mpesa, gateway):
    gateway.stk_error = httpx.ConnectError("connection refused")
    with pytest.raises(GatewayError, match="unavailable"):
        await mpesa.stk_push("254712345678", Decimal("10"))
    assert len(gateway.stk_calls()) == 1
    await mpesa.aclose()


def test_callback_url_carries_token(settings, gateway):
    settings = settings.model_copy(update={"mpesa_callback_token": "abc123"})
    client = MpesaClient(settings, transport=httpx.MockTransport(gateway))
    assert client.callback_url == "https://shop.test/payments/callback?token=abc123"
