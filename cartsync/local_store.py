"""
Local Store: the in-process, observable holder of the current cart.

Lifecycle: create() loads from persistence at startup, mutations persist
on every change, reset() drops back to an empty guest cart on sign-out and
dispose() detaches observers at shutdown.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError

from cartsync.config import Config
from cartsync.models import Cart, CartLine, OwnerMode, PersistenceEnvelope, utcnow
from cartsync.storage import Storage, NullStorage
from cartsync.exceptions import PersistenceCorruptionError, RedisConnectionError
from cartsync import transforms
from cartsync.transforms import LinesTransform

logger = logging.getLogger(__name__)

Observer = Callable[[Cart], None]


def encode_envelope(cart: Cart) -> bytes:
    envelope = PersistenceEnvelope(schema_version=Config.CART_SCHEMA_VERSION, cart=cart)
    return envelope.model_dump_json().encode("utf-8")


def decode_envelope(raw: bytes) -> Cart:
    """Parse a stored envelope, raising PersistenceCorruptionError on any defect"""
    try:
        envelope = PersistenceEnvelope.model_validate_json(raw)
    except PydanticValidationError as e:
        raise PersistenceCorruptionError(f"Unparsable cart envelope: {e.error_count()} errors")

    if envelope.schema_version != Config.CART_SCHEMA_VERSION:
        raise PersistenceCorruptionError(
            f"Unrecognized cart schema version {envelope.schema_version}"
        )
    if envelope.cart.schema_version != envelope.schema_version:
        raise PersistenceCorruptionError(
            f"Cart schema version {envelope.cart.schema_version} does not match envelope"
        )
    return envelope.cart


class CartStore:
    """Observable cart container with durable persistence"""

    def __init__(self, storage: Optional[Storage] = None, key: Optional[str] = None):
        self.storage = storage or NullStorage()
        self.key = key or Config.CART_STORAGE_KEY
        self._cart = Cart.empty()
        self._authenticated = False
        self._observers: List[Observer] = []

    @classmethod
    def create(cls, storage: Optional[Storage] = None, key: Optional[str] = None) -> "CartStore":
        """Build a store and restore its cart from persistence"""
        store = cls(storage, key)
        store.load_from_persistence()
        return store

    # Reads

    def get_cart(self) -> Cart:
        return self._cart

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    @property
    def total_items(self) -> int:
        return self._cart.total_items

    @property
    def total_price(self) -> Decimal:
        return self._cart.total_price

    # Observation

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it"""
        self._observers.append(observer)

        def _unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify(self):
        for observer in list(self._observers):
            try:
                observer(self._cart)
            except Exception as e:
                # Observers are isolated from each other and from the writer
                logger.error(
                    f"Cart observer failed: {type(e).__name__}: {e}",
                    extra={"observer": repr(observer)},
                    exc_info=True
                )

    # Writes

    def _commit(self, cart: Cart):
        self._cart = cart
        self.persist()
        self._notify()

    def mutate(self, transform: LinesTransform) -> Cart:
        """
        Apply a line transform and persist the result.

        Transform errors propagate and leave the cart untouched.
        """
        lines = transform(dict(self._cart.lines))
        cart = self._cart.model_copy(update={"lines": lines, "last_modified_at": utcnow()})
        self._commit(cart)
        return cart

    def add_item(self, line: CartLine) -> Cart:
        return self.mutate(transforms.add_item(line))

    def update_quantity(self, product_id: str, quantity: int) -> Cart:
        return self.mutate(transforms.update_quantity(product_id, quantity))

    def remove_item(self, product_id: str) -> Cart:
        return self.mutate(transforms.remove_item(product_id))

    def clear_cart(self) -> Cart:
        return self.mutate(transforms.clear())

    def set_authenticated(self, flag: bool):
        """Record the auth flag. Merging is the coordinator's job."""
        self._authenticated = flag

    def install(self, cart: Cart):
        """Replace the whole cart. Only the sync coordinator calls this."""
        self._commit(cart)

    def reset(self):
        """Drop to an empty guest cart"""
        self._commit(Cart.empty(OwnerMode.GUEST))

    def dispose(self):
        self._observers.clear()

    # Persistence

    @contextmanager
    def _persisted(self) -> Iterator[Optional[bytes]]:
        """
        Hold the stored envelope for the duration of a load.

        A corrupt envelope is removed and the store falls back to an empty
        guest cart, so a load either applies fully or not at all.
        """
        try:
            raw = self.storage.read(self.key)
        except RedisConnectionError as e:
            logger.warning(f"Cart storage unreadable, starting empty: {e}")
            raw = None

        try:
            yield raw
        except PersistenceCorruptionError as e:
            logger.warning(
                f"Discarding stored cart: {e}",
                extra={"storage_key": self.key}
            )
            self._cart = Cart.empty(OwnerMode.GUEST)
            try:
                self.storage.remove(self.key)
            except RedisConnectionError as remove_error:
                logger.warning(f"Could not remove corrupt cart envelope: {remove_error}")

    def load_from_persistence(self) -> Cart:
        """Restore the cart from storage. Never raises on bad data."""
        with self._persisted() as raw:
            if raw is None:
                self._cart = Cart.empty(OwnerMode.GUEST)
            else:
                self._cart = decode_envelope(raw)
        self._notify()
        return self._cart

    def persist(self):
        """Best-effort write of the current cart"""
        try:
            self.storage.write(self.key, encode_envelope(self._cart))
        except RedisConnectionError as e:
            logger.warning(f"Could not persist cart: {e}", extra={"storage_key": self.key})
