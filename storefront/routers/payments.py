import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import orders
from ..config import Settings
from ..deps import get_db, get_events, get_mpesa, get_settings
from ..errors import Conflict, UpstreamError
from ..events import PAYMENT_FAILED, PAYMENT_SUCCEEDED, EventPublisher, order_payload
from ..lifecycle import OrderStatus
from ..mpesa import GatewayError, MpesaClient
from ..schemas import CallbackEnvelope, PaymentInitiateIn, PaymentInitiateOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

# What Daraja expects back; anything else makes it retry the callback
CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


@router.post("/initiate", response_model=PaymentInitiateOut)
async def initiate_payment(
    payload: PaymentInitiateIn,
    db: Session = Depends(get_db),
    mpesa: MpesaClient = Depends(get_mpesa),
):
    description = None
    if payload.order_id is not None:
        order = orders.order_for_payment(db, payload.order_id, payload.amount)
        description = f"Order {order.id}"

    try:
        result = await mpesa.stk_push(payload.phone, payload.amount, description=description)
    except GatewayError as e:
        logger.error("M-Pesa STK push failed phone=%s amount=%s error=%s", payload.phone, payload.amount, e)
        raise UpstreamError("Payment gateway request failed")

    if payload.order_id is not None and not orders.attach_correlation_id(
        db, payload.order_id, result.checkout_request_id
    ):
        # Cancelled, or another push attached first, while this one was in flight
        logger.warning(
            "Order %s changed during STK push, CheckoutRequestID=%s not attached",
            payload.order_id, result.checkout_request_id,
        )
        raise Conflict("Order is no longer awaiting payment")

    return PaymentInitiateOut(
        correlation_id=result.checkout_request_id,
        merchant_request_id=result.merchant_request_id,
        customer_message=result.customer_message,
        order_id=payload.order_id,
    )


@router.post("/callback")
async def payment_callback(
    request: Request,
    token: str | None = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    events: EventPublisher = Depends(get_events),
):
    """
    Daraja STK callback. Acknowledged with 200 whatever it contains
    (unknown ids, duplicates, junk, a failed write) so the gateway stops
    retrying. A failed write is logged with the CheckoutRequestID for replay.
    """
    expected = settings.mpesa_callback_token
    if expected and not hmac.compare_digest(token or "", expected):
        raise HTTPException(status_code=403, detail="Invalid callback token")

    try:
        body = await request.json()
    except ValueError:
        logger.warning("M-Pesa callback with non-JSON body ignored")
        return CALLBACK_ACK

    try:
        envelope = CallbackEnvelope.model_validate(body)
    except ValidationError as e:
        logger.warning("Malformed M-Pesa callback ignored: %s", e.errors(include_url=False))
        return CALLBACK_ACK

    callback = envelope.body.stk_callback
    try:
        order, applied = orders.apply_payment_result(db, callback)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to apply M-Pesa callback CheckoutRequestID=%s ResultCode=%s",
            callback.checkout_request_id, callback.result_code,
        )
        return CALLBACK_ACK

    if order is not None and applied:
        event_type = PAYMENT_SUCCEEDED if order.status == OrderStatus.PAID.value else PAYMENT_FAILED
        payload = order_payload(order)
        payload.update({"result_desc": callback.result_desc, "receipt": order.payment_receipt})
        events.publish(event_type, payload, safe=True)

    return CALLBACK_ACK
