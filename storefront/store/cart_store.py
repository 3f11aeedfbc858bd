
import json
from typing import Dict, Any, List
from redis import Redis
from storefront.core.config import settings
from storefront.core.logging_config import get_logger

log = get_logger(__name__)

def get_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)

def cart_key(user_id: int) -> str:
    return f"cart:{user_id}"

class CartStore:
    """Per-user cart in a redis hash: {product_id: item_json}."""

    def __init__(self, r: Redis):
        self.r = r

    def get_cart(self, user_id: int) -> List[Dict[str, Any]]:
        items = self.r.hgetall(cart_key(user_id))
        parsed = []
        for pid, val in items.items():
            try:
                parsed.append(json.loads(val))
            except json.JSONDecodeError:
                log.warning(f"[Cart user={user_id}] dropping unreadable entry for product {pid}")
                continue
        return sorted(parsed, key=lambda it: it["product_id"])

    def get_item(self, user_id: int, product_id: int):
        raw = self.r.hget(cart_key(user_id), str(product_id))
        return json.loads(raw) if raw else None

    def put_item(self, user_id: int, item: Dict[str, Any]):
        self.r.hset(cart_key(user_id), str(item["product_id"]), json.dumps(item))

    def delete_item(self, user_id: int, product_id: int):
        self.r.hdel(cart_key(user_id), str(product_id))

    def clear_cart(self, user_id: int):
        self.r.delete(cart_key(user_id))
