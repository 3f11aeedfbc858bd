
from kafka import KafkaProducer
from kafka.errors import KafkaError
import json
from storefront.core.config import settings
from storefront.core.logging_config import get_logger

log = get_logger(__name__)

ORDER_EVENTS_TOPIC = "order.events"

_producer = None

def get_producer():
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict):
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)

def publish_event(key: str, value: dict):
    """Publish an order event. Broker trouble is logged; the checkout result never depends on it."""
    if not settings.EVENTS_ENABLED:
        log.info(f"[Events disabled] {value.get('type')} key={key}")
        return
    try:
        send(ORDER_EVENTS_TOPIC, key=key, value=value)
    except KafkaError as e:
        log.error(f"Failed to publish {value.get('type')} key={key}: {e}")
