import json
import logging
from typing import Any, Dict

from .config import Settings

logger = logging.getLogger(__name__)

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"


class EventPublisher:
    """
    Publishes {"type": ..., "payload": ...} messages to the configured backend.

    backend:
      log       only log the event (local dev, tests)
      rabbitmq  topic exchange, routing key = event type
      sqs       one message per event, type in a message attribute
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.backend = settings.event_backend.strip().lower()
        # Reuse AWS client across invocations (Lambda-friendly)
        self._sqs_client = None

    def publish(self, event_type: str, payload: Dict[str, Any], *, safe: bool = False) -> None:
        """
        safe=True: swallow exceptions (log only). Use it on request paths where
        the order write has already committed.
        """
        try:
            if self.backend == "log":
                logger.info("event %s %s", event_type, json.dumps(payload, default=str))
                return

            if self.backend == "rabbitmq":
                self._publish_rabbitmq(event_type, payload)
                return

            if self.backend == "sqs":
                self._publish_sqs(event_type, payload)
                return

            raise RuntimeError(f"Unsupported EVENT_BACKEND={self.backend}")

        except Exception as e:
            if safe:
                logger.warning("event publish failed type=%s error=%r", event_type, e)
                return
            raise

    def _body(self, event_type: str, payload: Dict[str, Any]) -> str:
        return json.dumps({"type": event_type, "payload": payload}, default=str)

    def _publish_rabbitmq(self, event_type: str, payload: Dict[str, Any]) -> None:
        # Import here so a Lambda zip can omit pika if it only uses SQS
        import pika

        if not self.settings.rabbitmq_url:
            raise RuntimeError("RABBITMQ_URL is not set")

        params = pika.URLParameters(self.settings.rabbitmq_url)
        params.heartbeat = self.settings.rabbitmq_heartbeat
        params.blocked_connection_timeout = self.settings.rabbitmq_blocked_timeout

        conn = pika.BlockingConnection(params)
        try:
            ch = conn.channel()
            ch.exchange_declare(exchange=self.settings.event_exchange, exchange_type="topic", durable=True)
            ch.basic_publish(
                exchange=self.settings.event_exchange,
                routing_key=event_type,
                body=self._body(event_type, payload).encode("utf-8"),
                properties=pika.BasicProperties(delivery_mode=2, content_type="application/json"),
            )
        finally:
            if conn.is_open:
                conn.close()

    def _publish_sqs(self, event_type: str, payload: Dict[str, Any]) -> None:
        import boto3

        if not self.settings.sqs_queue_url:
            raise RuntimeError("SQS_QUEUE_URL is not set")

        if self._sqs_client is None:
            self._sqs_client = boto3.client("sqs")

        self._sqs_client.send_message(
            QueueUrl=self.settings.sqs_queue_url,
            MessageBody=self._body(event_type, payload),
            MessageAttributes={
                "type": {"DataType": "String", "StringValue": event_type}
            },
        )


def order_payload(order) -> Dict[str, Any]:
    return {
        "order_id": order.id,
        "email": order.customer_email,
        "name": order.customer_name,
        "phone": order.customer_phone,
        "total": float(order.total_amount),
        "status": order.status,
    }
