"""
Merge a guest cart into an authoritative cart.

Pure functions, no I/O. Merge sums quantities, so it is a one-time
reconciliation: merge(a, a) doubles every line. Callers must invoke it
once per sign-in edge.
"""
from typing import Optional

from cartsync.config import Config
from cartsync.models import Cart, CartLine, LineMetadata, OwnerMode


def _merge_metadata(
    local: Optional[LineMetadata],
    remote: Optional[LineMetadata]
) -> Optional[LineMetadata]:
    """Remote wins field by field; local fills fields remote lacks"""
    if local is None or remote is None:
        return remote or local
    return LineMetadata(
        name=remote.name if remote.name is not None else local.name,
        image=remote.image if remote.image is not None else local.image,
        sku=remote.sku if remote.sku is not None else local.sku,
    )


def merge_lines(local: CartLine, remote: CartLine, max_quantity: int) -> Optional[CartLine]:
    """
    Combine two lines for the same product.

    Quantity is the sum, capped at max_quantity and at known stock.
    Pricing comes from remote. Returns None when the cap leaves nothing.
    """
    stock = remote.stock_quantity if remote.stock_quantity is not None else local.stock_quantity
    cap = max_quantity if stock is None else min(max_quantity, stock)
    quantity = min(local.quantity + remote.quantity, cap)
    if quantity < 1:
        return None

    return CartLine(
        product_id=remote.product_id,
        quantity=quantity,
        unit_price_snapshot=remote.unit_price_snapshot,
        sale_price=remote.sale_price,
        stock_quantity=stock,
        metadata=_merge_metadata(local.metadata, remote.metadata),
    )


def _retag(cart: Cart) -> Cart:
    return cart.model_copy(update={
        "owner_mode": OwnerMode.AUTHENTICATED,
        "schema_version": Config.CART_SCHEMA_VERSION,
    })


def merge(local: Cart, remote: Cart, max_quantity: Optional[int] = None) -> Cart:
    """Merge local (guest) lines into remote (authoritative) lines."""
    max_quantity = max_quantity or Config.MAX_QUANTITY_PER_ITEM

    if remote.is_empty:
        return _retag(local)
    if local.is_empty:
        return _retag(remote)

    lines = {}
    for product_id in local.lines.keys() | remote.lines.keys():
        local_line = local.lines.get(product_id)
        remote_line = remote.lines.get(product_id)

        if local_line is None or remote_line is None:
            lines[product_id] = local_line or remote_line
            continue

        merged = merge_lines(local_line, remote_line, max_quantity)
        if merged is not None:
            lines[product_id] = merged

    return Cart(
        lines=lines,
        owner_mode=OwnerMode.AUTHENTICATED,
        last_modified_at=max(local.last_modified_at, remote.last_modified_at),
        schema_version=Config.CART_SCHEMA_VERSION,
    )
