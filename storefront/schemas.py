from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from .lifecycle import OrderStatus
from .mpesa import normalize_phone


class CamelModel(BaseModel):
    # camelCase on the wire, snake_case in Python; either is accepted on input
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


# ---------- products ----------

class ProductOut(CamelModel):
    id: int
    name: str
    description: str
    price: float
    category: str
    stock_quantity: int
    image_url: str | None = None
    created_at: datetime | None = None


class ProductCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    category: str = Field(min_length=1, max_length=100)
    stock_quantity: int = Field(default=0, ge=0)
    image_url: str | None = Field(default=None, max_length=500)


class ProductUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    price: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    stock_quantity: int | None = Field(default=None, ge=0)
    image_url: str | None = Field(default=None, max_length=500)


# ---------- orders ----------

class OrderItemIn(CamelModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(
        gt=0,
        max_digits=10,
        decimal_places=2,
        validation_alias=AliasChoices("price", "unitPrice", "unit_price"),
    )


class OrderCreateIn(CamelModel):
    customer_name: str = Field(min_length=1, max_length=255)
    customer_email: EmailStr
    customer_phone: str = Field(min_length=1, max_length=20)
    delivery_address: str | None = Field(default=None, max_length=1000)
    items: list[OrderItemIn] = Field(min_length=1)
    total_amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class OrderCreatedOut(CamelModel):
    order_id: int
    status: OrderStatus
    total_amount: float


class OrderItemOut(CamelModel):
    product_id: int
    product_name: str | None = None
    quantity: int
    unit_price: float
    subtotal: float


class OrderOut(CamelModel):
    id: int
    customer_name: str
    customer_email: str
    customer_phone: str
    delivery_address: str | None = None
    total_amount: float
    status: OrderStatus
    payment_correlation_id: str | None = None
    payment_receipt: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    items: list[OrderItemOut]


class OrderListOut(CamelModel):
    items: list[OrderOut]
    total: int
    limit: int
    offset: int


class OrderStatusUpdateIn(CamelModel):
    status: OrderStatus
    payment_correlation_id: str | None = Field(default=None, min_length=1, max_length=255)

    @field_validator("status", mode="before")
    @classmethod
    def status_lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


# ---------- payments ----------

class PaymentInitiateIn(CamelModel):
    phone: str
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    order_id: int | None = Field(default=None, gt=0)

    @field_validator("phone")
    @classmethod
    def phone_ok(cls, v: str) -> str:
        return normalize_phone(v)


class PaymentInitiateOut(CamelModel):
    correlation_id: str
    merchant_request_id: str | None = None
    customer_message: str | None = None
    order_id: int | None = None


class CallbackItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")


class CallbackMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    """Shape of Body.stkCallback as Daraja posts it."""

    model_config = ConfigDict(populate_by_name=True)

    merchant_request_id: str | None = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(min_length=1, alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field(default="", alias="ResultDesc")
    callback_metadata: CallbackMetadata | None = Field(default=None, alias="CallbackMetadata")

    def metadata_value(self, name: str) -> Any:
        if not self.callback_metadata:
            return None
        for item in self.callback_metadata.items:
            if item.name == name:
                return item.value
        return None


class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(alias="stkCallback")


class CallbackEnvelope(BaseModel):
    body: CallbackBody = Field(alias="Body")


class ErrorOut(BaseModel):
    error: str
    details: list[dict[str, Any]] | None = None
