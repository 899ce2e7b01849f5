"""
Remote Cart Gateway: the coordinator's view of the authoritative cart.
"""
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from cartsync.config import Config
from cartsync.models import Cart
from cartsync.exceptions import GatewayUnavailableError

logger = logging.getLogger(__name__)


class RemoteCartGateway(ABC):
    """Read/replace contract for the authoritative cart"""

    @abstractmethod
    async def fetch_cart(self) -> Optional[Cart]:
        """Return the authoritative cart, or None when none exists"""

    @abstractmethod
    async def replace_cart(self, cart: Cart) -> Cart:
        """Store cart as the authoritative cart and return what was stored"""


class HttpCartGateway(RemoteCartGateway):
    """Gateway speaking to the cart API over HTTP"""

    def __init__(
        self,
        user_id: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.user_id = user_id
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url or Config.CART_API_URL,
            timeout=timeout or Config.CART_API_TIMEOUT_SECONDS,
        )
        self._hashed_user_id = hashlib.sha256(user_id.encode()).hexdigest()[:8]

    @property
    def _headers(self) -> dict:
        return {"X-User-ID": self.user_id}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                f"Cart API {method} {path} failed: {type(e).__name__}: {e}",
                extra={"hashed_user_id": self._hashed_user_id}
            )
            raise GatewayUnavailableError(f"Cart API unreachable: {e}") from e

    def _parse(self, response: httpx.Response) -> Cart:
        if not response.is_success:
            raise GatewayUnavailableError(
                f"Cart API returned {response.status_code}",
                status_code=response.status_code
            )
        try:
            return Cart.model_validate_json(response.content)
        except PydanticValidationError as e:
            raise GatewayUnavailableError(
                f"Cart API returned an invalid cart: {e.error_count()} errors",
                status_code=response.status_code
            ) from e

    async def fetch_cart(self) -> Optional[Cart]:
        response = await self._request("GET", "/cart")
        if response.status_code == 404:
            return None
        return self._parse(response)

    async def replace_cart(self, cart: Cart) -> Cart:
        response = await self._request("PUT", "/cart", json=cart.model_dump(mode="json"))
        return self._parse(response)

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
