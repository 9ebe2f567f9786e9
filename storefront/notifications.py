"""Customer emails for order and payment events.

Runs as a queue consumer (SQS-triggered Lambda, EventBridge, or a direct
invoke), separate from the API process.
"""

import json
import logging
from html import escape
from typing import Any, Dict, List, Optional, Tuple

from .config import MailSettings, get_mail_settings
from .emailer import send_email
from .events import ORDER_CREATED, ORDER_STATUS_CHANGED, PAYMENT_FAILED, PAYMENT_SUCCEEDED

logger = logging.getLogger(__name__)

SHOP_NAME = "Mama Zulekha"

STATUS_TEXT = {
    "processing": "is being prepared",
    "shipped": "has been shipped",
    "delivered": "has been delivered",
    "cancelled": "has been cancelled",
}


def _money(total: Any) -> str:
    return f"KES {float(total):,.2f}"


def render(event_type: str, payload: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """(subject, html) for an event, or None when the event sends no email."""
    order_id = payload["order_id"]
    name = escape(str(payload.get("name") or "there"))

    if event_type == ORDER_CREATED:
        return (
            f"Order #{order_id} received - {SHOP_NAME}",
            f"<h3>Thank you, {name}!</h3>"
            f"<p>We have received order <b>#{order_id}</b>.</p>"
            f"<p>Total: <b>{_money(payload['total'])}</b></p>"
            "<p>Complete the M-Pesa prompt on your phone to pay.</p>",
        )

    if event_type == PAYMENT_SUCCEEDED:
        receipt = payload.get("receipt")
        return (
            f"Payment confirmed - {SHOP_NAME}",
            "<h3>Payment successful</h3>"
            f"<p>Order <b>#{order_id}</b> is paid.</p>"
            f"<p>Total: <b>{_money(payload['total'])}</b></p>"
            + (f"<p>M-Pesa receipt: <b>{escape(str(receipt))}</b></p>" if receipt else ""),
        )

    if event_type == PAYMENT_FAILED:
        reason = escape(str(payload.get("result_desc") or "The payment was not completed"))
        return (
            f"Payment not completed - {SHOP_NAME}",
            "<h3>Payment failed</h3>"
            f"<p>We could not confirm payment for order <b>#{order_id}</b>.</p>"
            f"<p>{reason}</p>",
        )

    if event_type == ORDER_STATUS_CHANGED:
        text = STATUS_TEXT.get(payload.get("status", ""))
        if not text:
            return None
        return (
            f"Order #{order_id} update - {SHOP_NAME}",
            f"<h3>Hi {name},</h3><p>Your order <b>#{order_id}</b> {text}.</p>",
        )

    return None


def handle_event(event_type: str, payload: Dict[str, Any], settings: MailSettings | None = None) -> bool:
    """Send the email for one event. Returns False when the event is ignored."""
    settings = settings or get_mail_settings()

    email = payload.get("email")
    message = render(event_type, payload) if email else None
    if message is None:
        logger.info("Ignoring event_type=%s payload=%s", event_type, payload)
        return False

    subject, html_body = message
    send_email(settings, email, subject, html_body)
    logger.info("Sent %s email to %s (order #%s)", event_type, email, payload.get("order_id"))
    return True


def _try_parse_json(s: Any) -> Optional[Dict[str, Any]]:
    if isinstance(s, dict):
        return s
    if not isinstance(s, str) or not s.strip():
        return None
    try:
        obj = json.loads(s)
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


def _parse_message(obj: Dict[str, Any]) -> Optional[Tuple[str, Dict[str, Any]]]:
    """
    Expected message format:
      { "type": "order.created", "payload": {...} }
    """
    event_type = obj.get("type") or obj.get("event_type")
    payload = obj.get("payload") or {}
    if not isinstance(event_type, str) or not isinstance(payload, dict):
        return None
    return event_type, payload


def _handle_sqs_batch(records: List[Dict[str, Any]], settings: MailSettings) -> Dict[str, Any]:
    """
    Partial batch response: only the failed message ids are returned, so
    SQS retries those (and eventually dead-letters them) instead of the batch.
    """
    failures: List[Dict[str, str]] = []
    processed = 0

    for r in records:
        message_id = r.get("messageId") or ""
        obj = _try_parse_json(r.get("body"))
        parsed = _parse_message(obj) if obj else None

        if not parsed:
            logger.warning("Bad SQS message id=%s body=%s", message_id, r.get("body"))
            if message_id:
                failures.append({"itemIdentifier": message_id})
            continue

        event_type, payload = parsed
        try:
            handle_event(event_type, payload, settings)
            processed += 1
        except Exception as e:
            logger.exception("Failed processing message_id=%s error=%r", message_id, e)
            if message_id:
                failures.append({"itemIdentifier": message_id})

    logger.info("SQS batch processed=%s failures=%s", processed, len(failures))
    return {"batchItemFailures": failures}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    settings = get_mail_settings()

    # 1) SQS
    records = event.get("Records")
    if isinstance(records, list) and records:
        return _handle_sqs_batch(records, settings)

    # 2) EventBridge: {"detail-type": "order.created", "detail": {...}}
    detail_type = event.get("detail-type")
    detail = event.get("detail")
    if isinstance(detail_type, str) and isinstance(detail, dict):
        handle_event(detail_type, detail, settings)
        return {"ok": True, "source": "eventbridge"}

    # 3) Direct invoke (testing)
    direct = _parse_message(event)
    if direct:
        event_type, payload = direct
        handle_event(event_type, payload, settings)
        return {"ok": True, "source": "direct"}

    logger.warning("Unsupported event format: %s", event)
    return {"ok": False, "error": "Unsupported event format"}
