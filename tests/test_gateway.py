"""
Tests for HttpCartGateway, against the cart API in-process and against
canned transport failures.
"""
from decimal import Decimal

import httpx
import pytest

from cartsync.cart_repository import CartRepository
from cartsync.coordinator import SyncCoordinator
from cartsync.exceptions import GatewayUnavailableError
from cartsync.gateway import HttpCartGateway
from cartsync.local_store import CartStore
from cartsync.main import app, get_cart_repository
from cartsync.models import AuthState, OwnerMode
from cartsync.redis_client import RedisClient
from tests.factories import line, cart_of


@pytest.fixture
def repository(redis_client: RedisClient) -> CartRepository:
    repository = CartRepository(redis_client)
    app.dependency_overrides[get_cart_repository] = lambda: repository
    yield repository
    app.dependency_overrides.clear()


@pytest.fixture
async def api_gateway(repository: CartRepository):
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    yield HttpCartGateway("user-1", client=client)
    await client.aclose()


def gateway_for(handler) -> HttpCartGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return HttpCartGateway("user-1", client=client)


class TestAgainstCartApi:

    @pytest.mark.asyncio
    async def test_missing_cart_is_none(self, api_gateway: HttpCartGateway):
        assert await api_gateway.fetch_cart() is None

    @pytest.mark.asyncio
    async def test_replace_then_fetch(self, api_gateway: HttpCartGateway):
        stored = await api_gateway.replace_cart(cart_of(line("A", 2, "3.10")))
        fetched = await api_gateway.fetch_cart()

        assert stored.owner_mode == OwnerMode.AUTHENTICATED
        assert fetched == stored
        assert fetched.lines["A"].unit_price_snapshot == Decimal("3.10")

    @pytest.mark.asyncio
    async def test_rejected_cart_surfaces_as_unavailable(self, api_gateway: HttpCartGateway):
        with pytest.raises(GatewayUnavailableError) as exc_info:
            await api_gateway.replace_cart(cart_of(line("A", 500)))

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_sign_in_scenario_end_to_end(
        self, api_gateway: HttpCartGateway, repository: CartRepository, store: CartStore
    ):
        repository.replace_cart("user-1", cart_of(line("A", 1, "9.00"), line("B", 3)))
        store.add_item(line("A", 2, "10.00"))
        coordinator = SyncCoordinator(store, api_gateway)

        await coordinator.handle(AuthState(is_loaded=True, is_signed_in=True))

        cart = store.get_cart()
        assert {pid: l.quantity for pid, l in cart.lines.items()} == {"A": 3, "B": 3}
        assert cart.lines["A"].unit_price_snapshot == Decimal("9.00")
        assert repository.get_cart("user-1") == cart


class TestTransportFailures:

    @pytest.mark.asyncio
    async def test_server_error(self):
        gateway = gateway_for(lambda request: httpx.Response(500, json={"error": "boom"}))

        with pytest.raises(GatewayUnavailableError) as exc_info:
            await gateway.fetch_cart()

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(GatewayUnavailableError):
            await gateway_for(handler).replace_cart(cart_of(line("A", 1)))

    @pytest.mark.asyncio
    async def test_invalid_payload(self):
        gateway = gateway_for(lambda request: httpx.Response(200, json={"lines": "nope"}))

        with pytest.raises(GatewayUnavailableError):
            await gateway.fetch_cart()

    @pytest.mark.asyncio
    async def test_identity_header_is_sent(self):
        seen = {}

        def handler(request):
            seen["user"] = request.headers.get("X-User-ID")
            return httpx.Response(404)

        await gateway_for(handler).fetch_cart()

        assert seen["user"] == "user-1"
