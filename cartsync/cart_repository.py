"""
Authoritative cart storage in Redis, one JSON document per user.
"""
import hashlib
import logging

from pydantic import ValidationError as PydanticValidationError

from cartsync.redis_client import RedisClient, get_redis_client
from cartsync.config import Config
from cartsync.models import Cart, OwnerMode, utcnow
from cartsync.exceptions import (
    CartNotFoundError,
    LimitExceededError,
    ValidationError
)

logger = logging.getLogger(__name__)


class CartRepository:
    """Read/replace/clear authoritative carts"""

    def __init__(self, redis: RedisClient = None):
        self.redis = redis or get_redis_client()

    def _get_cart_key(self, user_id: str) -> str:
        """Generate Redis key for cart"""
        return f"cart:{user_id}"

    def _hash_user_id(self, user_id: str) -> str:
        """Hash user ID for logging (no PII)"""
        return hashlib.sha256(user_id.encode()).hexdigest()[:8]

    def _validate_limits(self, cart: Cart):
        if len(cart.lines) > Config.MAX_ITEMS_PER_CART:
            raise LimitExceededError(
                f"Cart exceeds maximum items {Config.MAX_ITEMS_PER_CART}"
            )
        for line in cart.lines.values():
            if line.quantity > Config.MAX_QUANTITY_PER_ITEM:
                raise LimitExceededError(
                    f"Quantity {line.quantity} for {line.product_id} exceeds maximum "
                    f"{Config.MAX_QUANTITY_PER_ITEM}"
                )

    def get_cart(self, user_id: str) -> Cart:
        """Get the stored cart, raising CartNotFoundError when absent"""
        raw = self.redis.get(self._get_cart_key(user_id))
        if raw is None:
            raise CartNotFoundError(user_id)

        try:
            return Cart.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(
                f"Stored cart is unreadable: {e.error_count()} errors",
                extra={"hashed_user_id": self._hash_user_id(user_id)}
            )
            raise ValidationError("Stored cart is unreadable")

    def replace_cart(self, user_id: str, cart: Cart) -> Cart:
        """Store cart as the user's authoritative cart, refreshing its TTL"""
        self._validate_limits(cart)

        stored = cart.model_copy(update={
            "owner_mode": OwnerMode.AUTHENTICATED,
            "last_modified_at": utcnow(),
            "schema_version": Config.CART_SCHEMA_VERSION,
        })
        self.redis.set(
            self._get_cart_key(user_id),
            stored.model_dump_json(),
            ex=Config.CART_TTL_SECONDS
        )

        logger.info(
            "Cart replaced",
            extra={
                "hashed_user_id": self._hash_user_id(user_id),
                "lines": len(stored.lines),
                "total_items": stored.total_items
            }
        )
        return stored

    def clear_cart(self, user_id: str) -> bool:
        """Delete the user's cart"""
        deleted = self.redis.delete(self._get_cart_key(user_id))
        return deleted > 0
