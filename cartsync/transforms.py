"""
Line transforms applied by CartStore.mutate.

Each factory returns a function that takes the current line mapping and
returns a new one. The input mapping is never modified in place.
"""
from typing import Callable, Dict, Optional

from cartsync.config import Config
from cartsync.models import CartLine
from cartsync.exceptions import (
    ValidationError,
    LimitExceededError,
    ProductNotFoundError
)

Lines = Dict[str, CartLine]
LinesTransform = Callable[[Lines], Lines]


def add_item(
    line: CartLine,
    max_quantity: Optional[int] = None,
    max_items: Optional[int] = None
) -> LinesTransform:
    """
    Add a line, summing into an existing line for the same product.

    The existing line keeps its price snapshot and metadata; only the
    quantity grows.
    """
    max_quantity = max_quantity or Config.MAX_QUANTITY_PER_ITEM
    max_items = max_items or Config.MAX_ITEMS_PER_CART

    def _add(lines: Lines) -> Lines:
        existing = lines.get(line.product_id)
        existing_qty = existing.quantity if existing else 0
        new_qty = existing_qty + line.quantity

        if new_qty > max_quantity:
            raise LimitExceededError(
                f"Quantity {new_qty} exceeds maximum {max_quantity}"
            )

        # Only a new product counts against the line limit
        if existing is None and len(lines) >= max_items:
            raise LimitExceededError(f"Cart exceeds maximum items {max_items}")

        updated = dict(lines)
        if existing is None:
            updated[line.product_id] = line
        else:
            updated[line.product_id] = existing.model_copy(update={"quantity": new_qty})
        return updated

    return _add


def update_quantity(
    product_id: str,
    quantity: int,
    max_quantity: Optional[int] = None
) -> LinesTransform:
    """Set a line's quantity. Zero removes the line."""
    max_quantity = max_quantity or Config.MAX_QUANTITY_PER_ITEM

    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")

    if quantity > max_quantity:
        raise LimitExceededError(
            f"Quantity {quantity} exceeds maximum {max_quantity}"
        )

    def _update(lines: Lines) -> Lines:
        existing = lines.get(product_id)
        if existing is None:
            raise ProductNotFoundError(product_id)

        updated = dict(lines)
        if quantity == 0:
            del updated[product_id]
        else:
            updated[product_id] = existing.model_copy(update={"quantity": quantity})
        return updated

    return _update


def remove_item(product_id: str) -> LinesTransform:
    def _remove(lines: Lines) -> Lines:
        if product_id not in lines:
            raise ProductNotFoundError(product_id)
        return {pid: line for pid, line in lines.items() if pid != product_id}

    return _remove


def clear() -> LinesTransform:
    return lambda lines: {}
