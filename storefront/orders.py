"""Order store access: checkout, tracking queries and status changes.

Status changes are conditional updates (``... WHERE status = <expected>``)
so concurrent callbacks or admin actions on the same order cannot both apply.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from .errors import APIError, Conflict, NotFound, ValidationFailed
from .lifecycle import OrderStatus, TransitionError, check_admin_transition, payment_outcome
from .models import Order, OrderItem, Product
from .schemas import OrderCreateIn, OrderItemOut, OrderOut, StkCallback

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _with_items(stmt):
    return stmt.options(selectinload(Order.items).joinedload(OrderItem.product))


def to_out(order: Order) -> OrderOut:
    items = [
        OrderItemOut(
            product_id=i.product_id,
            product_name=i.product.name if i.product else None,
            quantity=i.quantity,
            unit_price=float(i.unit_price),
            subtotal=float(i.unit_price * i.quantity),
        )
        for i in order.items
    ]
    return OrderOut(
        id=order.id,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        delivery_address=order.delivery_address,
        total_amount=float(order.total_amount),
        status=OrderStatus(order.status),
        payment_correlation_id=order.payment_correlation_id,
        payment_receipt=order.payment_receipt,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=items,
    )


def _check_total(payload: OrderCreateIn) -> None:
    computed = sum((it.unit_price * it.quantity for it in payload.items), Decimal("0")).quantize(CENT)
    if computed != payload.total_amount.quantize(CENT):
        raise ValidationFailed.field(
            "totalAmount",
            f"Total amount {payload.total_amount} does not match the sum of item subtotals ({computed})",
        )


def create_order(db: Session, payload: OrderCreateIn) -> Order:
    """
    Insert the order and all of its items in one transaction.
    Nothing is written if any check fails.
    """
    _check_total(payload)

    try:
        with db.begin():
            product_ids = {it.product_id for it in payload.items}
            found = set(db.scalars(select(Product.id).where(Product.id.in_(product_ids))))
            missing = [
                {"field": f"items.{idx}.productId", "message": f"Product {it.product_id} not found"}
                for idx, it in enumerate(payload.items)
                if it.product_id not in found
            ]
            if missing:
                raise ValidationFailed("Validation failed", details=missing)

            order = Order(
                customer_name=payload.customer_name,
                customer_email=str(payload.customer_email),
                customer_phone=payload.customer_phone,
                delivery_address=payload.delivery_address or None,
                total_amount=payload.total_amount,
                status=OrderStatus.PENDING.value,
            )
            order.items = [
                OrderItem(product_id=it.product_id, quantity=it.quantity, unit_price=it.unit_price)
                for it in payload.items
            ]
            db.add(order)
    except SQLAlchemyError:
        logger.exception("Failed to create order for %s", payload.customer_email)
        raise APIError("Failed to create order")

    logger.info("Order %s created total=%s items=%s", order.id, order.total_amount, len(order.items))
    return order


def get_order(db: Session, order_id: int) -> Order:
    stmt = _with_items(select(Order).where(Order.id == order_id)).execution_options(populate_existing=True)
    order = db.scalars(stmt).first()
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders(
    db: Session,
    *,
    status: OrderStatus | None = None,
    email: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Order], int]:
    filters = []
    if status is not None:
        filters.append(Order.status == status.value)
    if email:
        filters.append(func.lower(Order.customer_email) == email.strip().lower())

    total = db.scalar(select(func.count(Order.id)).where(*filters)) or 0
    stmt = _with_items(
        select(Order).where(*filters).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
    )
    return list(db.scalars(stmt).unique()), total


def update_status(
    db: Session,
    order_id: int,
    target: OrderStatus,
    *,
    payment_correlation_id: str | None = None,
) -> tuple[Order, bool]:
    """
    Admin status change. Returns (order, changed).
    Asking for the status the order already has is a no-op.
    """
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")

    current = OrderStatus(order.status)
    values: dict = {}
    if target != current:
        try:
            check_admin_transition(current, target)
        except TransitionError as e:
            db.rollback()
            raise Conflict(str(e))
        values["status"] = target.value
    if payment_correlation_id and payment_correlation_id != order.payment_correlation_id:
        values["payment_correlation_id"] = payment_correlation_id

    if not values:
        db.rollback()
        return get_order(db, order_id), False

    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status == current.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        if result.rowcount == 0:
            db.rollback()
            raise Conflict("Order status changed concurrently, reload and retry")
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Payment correlation id is already attached to another order")

    logger.info("Order %s status %s -> %s", order_id, current.value, target.value)
    return get_order(db, order_id), "status" in values


def delete_order(db: Session, order_id: int) -> None:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    if order.status != OrderStatus.CANCELLED.value:
        db.rollback()
        raise ValidationFailed(f"Only cancelled orders can be deleted (order is {order.status})")

    db.delete(order)
    db.commit()
    logger.info("Order %s deleted", order_id)


def order_for_payment(db: Session, order_id: int, amount: Decimal) -> Order:
    order = get_order(db, order_id)
    if order.status != OrderStatus.PENDING.value:
        raise Conflict(f"Cannot pay order in status {order.status}")
    if order.payment_correlation_id:
        # a prompt is already out; its callback settles the order
        raise Conflict("Payment already in progress for this order")
    if order.total_amount.quantize(CENT) != Decimal(amount).quantize(CENT):
        raise ValidationFailed.field("amount", f"Amount must equal the order total ({order.total_amount})")
    # end the read before the gateway round trip
    db.commit()
    return order


def attach_correlation_id(db: Session, order_id: int, correlation_id: str) -> bool:
    """Store the gateway correlation id on a pending order that has none yet."""
    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.PENDING.value,
            Order.payment_correlation_id.is_(None),
        )
        .values(payment_correlation_id=correlation_id)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Payment correlation id is already attached to another order")
    return result.rowcount == 1


def apply_payment_result(db: Session, callback: StkCallback) -> tuple[Order | None, bool]:
    """
    Move a pending order to paid/failed. Returns (order, applied).

    Only a pending order changes; a repeated or late callback for an order
    that already left pending leaves it untouched.
    """
    cid = callback.checkout_request_id
    target = payment_outcome(callback.result_code)

    values: dict = {"status": target.value}
    if target is OrderStatus.PAID:
        receipt = callback.metadata_value("MpesaReceiptNumber")
        if receipt:
            values["payment_receipt"] = str(receipt)[:64]

    stmt = (
        update(Order)
        .where(Order.payment_correlation_id == cid, Order.status == OrderStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    applied = result.rowcount == 1

    order = db.scalars(
        _with_items(select(Order).where(Order.payment_correlation_id == cid)).execution_options(populate_existing=True)
    ).first()

    if order is None:
        logger.warning("M-Pesa callback for unknown CheckoutRequestID=%s ResultCode=%s", cid, callback.result_code)
    elif applied:
        logger.info("Order %s %s via M-Pesa (%s)", order.id, target.value, callback.result_desc)
    elif target is OrderStatus.PAID and order.status == OrderStatus.CANCELLED.value:
        logger.warning("Payment received for cancelled order %s (receipt=%s), refund needed", order.id, values.get("payment_receipt"))
    else:
        logger.info(
            "Ignoring duplicate M-Pesa callback for order %s (status=%s, ResultCode=%s)",
            order.id, order.status, callback.result_code,
        )
    return order, applied
