"""
Builders for lines and carts, and an in-memory gateway double.
"""
import asyncio
from decimal import Decimal
from typing import Optional

from cartsync.exceptions import GatewayUnavailableError
from cartsync.gateway import RemoteCartGateway
from cartsync.models import Cart, CartLine, OwnerMode


def line(product_id: str, quantity: int, price: str = "10.00", **fields) -> CartLine:
    return CartLine(
        product_id=product_id,
        quantity=quantity,
        unit_price_snapshot=Decimal(price),
        **fields
    )


def cart_of(*lines: CartLine, owner_mode: OwnerMode = OwnerMode.GUEST, **fields) -> Cart:
    return Cart(lines={l.product_id: l for l in lines}, owner_mode=owner_mode, **fields)


class InMemoryGateway(RemoteCartGateway):
    """
    Gateway double holding one authoritative cart.

    Counts calls, fails selected fetch calls, and can hold a given fetch
    call open until released so intermediate phases can be observed.
    """

    def __init__(self, cart: Optional[Cart] = None):
        self.cart = cart
        self.fetch_calls = 0
        self.replace_calls = 0
        self.replaced = []
        self.fail_fetch_calls = set()
        self.fail_replace = False
        self.block_fetch_call: Optional[int] = None
        self.fetch_blocked = asyncio.Event()
        self.release_fetch = asyncio.Event()

    async def fetch_cart(self) -> Optional[Cart]:
        self.fetch_calls += 1
        call = self.fetch_calls
        if call == self.block_fetch_call:
            self.fetch_blocked.set()
            await self.release_fetch.wait()
        if call in self.fail_fetch_calls:
            raise GatewayUnavailableError("fetch failed", status_code=503)
        return self.cart

    async def replace_cart(self, cart: Cart) -> Cart:
        self.replace_calls += 1
        if self.fail_replace:
            raise GatewayUnavailableError("replace failed", status_code=503)
        self.cart = cart.model_copy(update={"owner_mode": OwnerMode.AUTHENTICATED})
        self.replaced.append(self.cart)
        return self.cart
