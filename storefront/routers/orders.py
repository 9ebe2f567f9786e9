from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import orders
from ..deps import get_db, get_events
from ..events import ORDER_CREATED, ORDER_STATUS_CHANGED, EventPublisher, order_payload
from ..lifecycle import OrderStatus
from ..schemas import OrderCreatedOut, OrderCreateIn, OrderListOut, OrderOut, OrderStatusUpdateIn
from ..security import require_admin

router = APIRouter(tags=["orders"])


@router.post("/orders", response_model=OrderCreatedOut, status_code=201)
def create_order(
    payload: OrderCreateIn,
    db: Session = Depends(get_db),
    events: EventPublisher = Depends(get_events),
):
    order = orders.create_order(db, payload)

    # The order is committed; a broken event backend must not fail checkout
    events.publish(ORDER_CREATED, order_payload(order), safe=True)

    return OrderCreatedOut(order_id=order.id, status=OrderStatus(order.status), total_amount=float(order.total_amount))


@router.get("/orders", response_model=OrderListOut)
def list_orders(
    status: OrderStatus | None = None,
    email: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = orders.list_orders(db, status=status, email=email, limit=limit, offset=offset)
    return OrderListOut(items=[orders.to_out(o) for o in rows], total=total, limit=limit, offset=offset)


# Public tracking view
@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return orders.to_out(orders.get_order(db, order_id))


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdateIn,
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
    events: EventPublisher = Depends(get_events),
):
    order, changed = orders.update_status(
        db,
        order_id,
        payload.status,
        payment_correlation_id=payload.payment_correlation_id,
    )
    if changed:
        events.publish(ORDER_STATUS_CHANGED, order_payload(order), safe=True)
    return orders.to_out(order)


@router.delete("/orders/{order_id}")
def delete_order(order_id: int, claims: dict = Depends(require_admin), db: Session = Depends(get_db)):
    orders.delete_order(db, order_id)
    return {"ok": True}
