"""Shared fixtures: an app on a throwaway SQLite file and a fake Daraja gateway."""

import time
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from storefront.config import Settings
from storefront.events import EventPublisher
from storefront.main import create_app
from storefront.models import Product
from storefront.mpesa import MpesaClient

JWT_SECRET = "test-jwt-secret"


class FakeDaraja:
    """httpx.MockTransport handler standing in for the Daraja sandbox."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_failures = 0
        self.token_status = 200
        self.stk_status = 200
        self.stk_body: dict | None = None
        self.stk_error: Exception | None = None
        self._pushes = 0

    def token_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/oauth/v1/generate"]

    def stk_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/mpesa/stkpush/v1/processrequest"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == "/oauth/v1/generate":
            if self.token_failures:
                self.token_failures -= 1
                return httpx.Response(503, json={"errorMessage": "Service unavailable"})
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"errorMessage": "Invalid credentials"})
            return httpx.Response(200, json={"access_token": "sandbox-token", "expires_in": "3599"})

        if request.url.path == "/mpesa/stkpush/v1/processrequest":
            if self.stk_error is not None:
                raise self.stk_error
            self._pushes += 1
            body = self.stk_body or {
                "MerchantRequestID": f"29115-3462-{self._pushes}",
                "CheckoutRequestID": f"ws_CO_191020261200{self._pushes:04d}",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            }
            return httpx.Response(self.stk_status, json=body)

        return httpx.Response(404, json={"errorMessage": "not found"})


class RecordingPublisher(EventPublisher):
    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.events: list[tuple[str, dict]] = []

    def publish(self, event_type, payload, *, safe=False):
        self.events.append((event_type, payload))

    def types(self) -> list[str]:
        return [t for t, _ in self.events]


def make_token(**claims) -> str:
    payload = {"sub": "1", "email": "admin@glowhub.test", "exp": int(time.time()) + 3600}
    payload.update(claims)
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def stk_callback(checkout_request_id: str, result_code: int = 0, receipt: str = "SJK4H7TX2P") -> dict:
    callback = {
        "MerchantRequestID": "29115-3462-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0
        else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 200},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20261019120102},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'storefront.db'}",
        db_schema=None,
        jwt_secret=JWT_SECRET,
        jwt_issuer=None,
        jwt_audience=None,
        seed_sample_products=False,
        db_init_on_startup=True,
        mpesa_base_url="https://daraja.test",
        mpesa_consumer_key="consumer-key",
        mpesa_consumer_secret="consumer-secret",
        mpesa_shortcode="174379",
        mpesa_passkey="passkey",
        mpesa_callback_url="https://shop.test/payments/callback",
        mpesa_callback_token=None,
        mpesa_token_retries=3,
        mpesa_token_backoff=0,
        event_backend="log",
        log_level="WARNING",
    )


@pytest.fixture
def gateway() -> FakeDaraja:
    return FakeDaraja()


@pytest.fixture
def events(settings) -> RecordingPublisher:
    return RecordingPublisher(settings)


@pytest.fixture
def app(settings, gateway, events):
    mpesa = MpesaClient(settings, transport=httpx.MockTransport(gateway))
    return create_app(settings, mpesa=mpesa, events=events)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def new_session(app, client):
    """Factory for fresh sessions, so assertions never read a stale identity map."""
    return app.state.db.session


@pytest.fixture
def products(new_session):
    with new_session() as s:
        s.add_all(
            [
                Product(id=1, name="Glow Serum", description="Vitamin C serum", price=Decimal("100.00"),
                        category="skincare", stock_quantity=50),
                Product(id=2, name="Lip Balm Set", description="Three flavours", price=Decimal("800.00"),
                        category="lip-care", stock_quantity=100),
            ]
        )
        s.commit()
    return [1, 2]


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(role='admin')}"}


@pytest.fixture
def user_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(role='user')}"}


@pytest.fixture
def jane_order() -> dict:
    return {
        "customerName": "Jane",
        "customerEmail": "jane@x.com",
        "customerPhone": "0712345678",
        "items": [{"productId": 1, "quantity": 2, "price": 100}],
        "totalAmount": 200,
    }
