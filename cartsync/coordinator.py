"""
Sync Coordinator: reconciles the local cart with the authoritative cart
across sign-in and sign-out.

Auth notifications arrive on a single ordered channel and are consumed one
at a time by run(). Notifications that pile up while a sync is in flight
are coalesced to the latest, and a notification is acted on only when it
differs from the last signed-in flag acted on. Together these give:

- at most one sync in flight
- at most one merge per observed sign-in edge
- sign-out during a sync is applied only after the sync settles

A user edit made while a sync is in flight is applied locally at once but
may be overwritten when the reload installs the authoritative snapshot.
"""
import asyncio
import logging
from typing import Optional

from cartsync.merge import merge
from cartsync.models import AuthState, Cart, OwnerMode, SyncPhase, SyncState
from cartsync.local_store import CartStore
from cartsync.gateway import RemoteCartGateway
from cartsync.transforms import LinesTransform
from cartsync.exceptions import GatewayUnavailableError

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Drives the {push, merge, write back, reload} sequence"""

    def __init__(self, store: CartStore, gateway: RemoteCartGateway, max_quantity: Optional[int] = None):
        self.store = store
        self.gateway = gateway
        self.max_quantity = max_quantity
        self._state = SyncState()
        self._channel: "asyncio.Queue[AuthState]" = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._worker: Optional[asyncio.Task] = None
        # None until the first loaded notification
        self._acted_signed_in: Optional[bool] = None
        self._merge_written = False
        self._last_error: Optional[GatewayUnavailableError] = None

    # Observable state

    @property
    def phase(self) -> SyncPhase:
        return self._state.phase

    @property
    def pending_transition(self) -> Optional[bool]:
        return self._state.pending_auth_transition

    @property
    def last_error(self) -> Optional[GatewayUnavailableError]:
        return self._last_error

    @property
    def is_syncing(self) -> bool:
        return self._state.phase == SyncPhase.SYNCING

    @property
    def is_loading(self) -> bool:
        return self._state.phase == SyncPhase.LOADING

    def _busy(self) -> bool:
        return self._state.phase in (SyncPhase.SYNCING, SyncPhase.LOADING)

    def _awaiting_merge(self) -> bool:
        """True while the local cart is a guest cart not yet merged upstream"""
        return not self._merge_written and self.store.get_cart().owner_mode == OwnerMode.GUEST

    def _set_phase(self, phase: SyncPhase):
        if phase != self._state.phase:
            logger.info(
                f"Cart sync phase {self._state.phase.value} -> {phase.value}",
                extra={"from_phase": self._state.phase.value, "to_phase": phase.value}
            )
        self._state.phase = phase

    # Channel

    def publish(self, auth: AuthState):
        """Queue an auth notification. Ignored until auth state has loaded."""
        if not auth.is_loaded:
            return
        self._state.pending_auth_transition = auth.is_signed_in
        self._channel.put_nowait(auth)

    async def run(self):
        """Consume auth notifications forever, one at a time"""
        while True:
            auth = await self._channel.get()
            consumed = 1
            # Coalesce whatever queued up behind it
            while not self._channel.empty():
                auth = self._channel.get_nowait()
                consumed += 1
            self._state.pending_auth_transition = None
            try:
                await self.handle(auth)
            except Exception as e:
                logger.error(
                    f"Cart sync worker failed handling auth change: {type(e).__name__}: {e}",
                    extra={"phase": self._state.phase.value},
                    exc_info=True
                )
                if self._busy():
                    self._set_phase(SyncPhase.ERROR)
            finally:
                for _ in range(consumed):
                    self._channel.task_done()

    def start(self) -> asyncio.Task:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self.run())
        return self._worker

    async def join(self):
        """Wait until every published notification has been handled"""
        await self._channel.join()

    async def stop(self):
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def handle(self, auth: AuthState):
        """Act on one auth notification"""
        if not auth.is_loaded:
            return

        signed_in = auth.is_signed_in
        if signed_in == self._acted_signed_in:
            # Repeated value, nothing changed
            return

        first = self._acted_signed_in is None
        self._acted_signed_in = signed_in
        self.store.set_authenticated(signed_in)

        if signed_in:
            self._merge_written = False
            async with self._lock:
                await self._sign_in()
        elif not first or self.store.get_cart().owner_mode == OwnerMode.AUTHENTICATED:
            # An initial signed-out notification keeps a guest cart but
            # never a stale authenticated mirror
            async with self._lock:
                self._sign_out()

    # Sequence steps

    async def _sign_in(self):
        if self._awaiting_merge():
            if await self._push_and_merge() is None:
                return
        else:
            # Already merged, or the local cart is a mirror of upstream
            self._merge_written = True
        await self._reload()

    def _sign_out(self):
        self._merge_written = False
        self._last_error = None
        self.store.reset()
        self._set_phase(SyncPhase.IDLE)

    def _fail(self, error: GatewayUnavailableError):
        logger.warning(
            f"Cart sync failed during {self._state.phase.value}: {error}",
            extra={"phase": self._state.phase.value, "status_code": error.status_code}
        )
        self._last_error = error
        self._set_phase(SyncPhase.ERROR)

    async def _push_and_merge(self) -> Optional[Cart]:
        self._set_phase(SyncPhase.SYNCING)
        self._last_error = None
        local = self.store.get_cart()
        try:
            remote = await self.gateway.fetch_cart()
            merged = merge(local, remote or Cart.empty(OwnerMode.AUTHENTICATED), self.max_quantity)
            written = await self.gateway.replace_cart(merged)
        except GatewayUnavailableError as e:
            self._fail(e)
            return None
        self._merge_written = True
        logger.info(
            "Merged guest cart into authoritative cart",
            extra={"local_lines": len(local.lines), "merged_lines": len(written.lines)}
        )
        return written

    async def _reload(self) -> Optional[Cart]:
        self._set_phase(SyncPhase.LOADING)
        self._last_error = None
        try:
            cart = await self.gateway.fetch_cart()
        except GatewayUnavailableError as e:
            self._fail(e)
            return None
        if cart is None:
            cart = Cart.empty(OwnerMode.AUTHENTICATED)
        self.store.install(cart)
        self._set_phase(SyncPhase.IDLE)
        return cart

    # UI-facing operations

    async def sync_with_database(self) -> Optional[Cart]:
        """
        Push the local guest cart and merge it into the authoritative cart.

        No-op when signed out, when a sync is already in flight, or when
        the local cart is no longer an unmerged guest cart.
        """
        if not self.store.is_authenticated or self._busy() or not self._awaiting_merge():
            return None
        async with self._lock:
            if not self._awaiting_merge():
                return None
            written = await self._push_and_merge()
            if written is not None:
                self._set_phase(SyncPhase.IDLE)
            return written

    async def load_cart_from_database(self) -> Optional[Cart]:
        """
        Replace the local cart with the authoritative cart.

        Refused while a guest cart still awaits its merge, so a reload can
        never overwrite unmerged guest lines.
        """
        if not self.store.is_authenticated or self._busy() or self._awaiting_merge():
            return None
        async with self._lock:
            if self._awaiting_merge():
                return None
            return await self._reload()

    async def retry(self) -> bool:
        """
        Re-run a failed sign-in sync.

        A merge that already reached the gateway is not repeated; only the
        reload runs again. Returns True when the store ends up in sync.
        """
        if self._state.phase != SyncPhase.ERROR or not self.store.is_authenticated:
            return False
        async with self._lock:
            await self._sign_in()
        return self._state.phase == SyncPhase.IDLE

    async def mutate(self, transform: LinesTransform) -> Cart:
        """
        Apply a user edit.

        Guest edits only touch the local store. Authenticated edits are also
        written through to the gateway once any in-flight sync settles; on
        failure the local edit is rolled back and the error re-raised.
        """
        if not self.store.is_authenticated:
            return self.store.mutate(transform)

        before = self.store.get_cart()
        after = self.store.mutate(transform)

        async with self._lock:
            current = self.store.get_cart()
            if not self.store.is_authenticated or current.owner_mode != OwnerMode.AUTHENTICATED:
                # Signed out while waiting, or the guest cart is still
                # awaiting its merge; either way nothing to write through
                return current
            try:
                await self.gateway.replace_cart(current)
            except GatewayUnavailableError:
                if self.store.get_cart() is after:
                    self.store.install(before)
                raise
        return self.store.get_cart()
