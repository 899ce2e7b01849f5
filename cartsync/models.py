"""
Pydantic models for carts, persistence envelopes and sync state.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, Dict
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum

from cartsync.config import Config


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OwnerMode(str, Enum):
    """Who owns the cart value"""
    GUEST = "guest"
    AUTHENTICATED = "authenticated"


class SyncPhase(str, Enum):
    """Sync Coordinator phases"""
    IDLE = "idle"
    SYNCING = "syncing"
    LOADING = "loading"
    ERROR = "error"


class LineMetadata(BaseModel):
    """Display fields captured with a line"""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = Field(None, description="Product display name")
    image: Optional[str] = Field(None, description="Product image URL")
    sku: Optional[str] = Field(None, description="Stock keeping unit")


class CartLine(BaseModel):
    """Cart line model"""
    model_config = ConfigDict(frozen=True)

    product_id: str = Field(..., min_length=1, description="Product identifier")
    quantity: int = Field(..., description="Item quantity")
    unit_price_snapshot: Decimal = Field(..., ge=0, description="Price at time of add")
    sale_price: Optional[Decimal] = Field(None, ge=0, description="Sale price at time of add")
    stock_quantity: Optional[int] = Field(None, ge=0, description="Known stock level")
    metadata: Optional[LineMetadata] = Field(None, description="Display fields")

    @field_validator('quantity')
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1")
        return v

    @property
    def unit_price(self) -> Decimal:
        """Effective price: sale price when present"""
        return self.sale_price if self.sale_price is not None else self.unit_price_snapshot

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart(BaseModel):
    """A cart value. Totals are derived from lines and never stored."""
    model_config = ConfigDict(frozen=True)

    lines: Dict[str, CartLine] = Field(default_factory=dict, description="Cart lines by product_id")
    owner_mode: OwnerMode = Field(OwnerMode.GUEST, description="Guest or authenticated")
    last_modified_at: datetime = Field(default_factory=utcnow, description="Last mutation time")
    schema_version: int = Field(Config.CART_SCHEMA_VERSION, description="Cart schema version")

    @model_validator(mode="after")
    def check_line_keys(self) -> "Cart":
        for product_id, line in self.lines.items():
            if product_id != line.product_id:
                raise ValueError(f"Line key {product_id} does not match product {line.product_id}")
        return self

    @classmethod
    def empty(cls, owner_mode: OwnerMode = OwnerMode.GUEST) -> "Cart":
        return cls(owner_mode=owner_mode)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines.values())

    @property
    def total_price(self) -> Decimal:
        return sum((line.line_total for line in self.lines.values()), Decimal("0"))


class PersistenceEnvelope(BaseModel):
    """On-disk representation of the local cart"""
    schema_version: int = Field(..., description="Envelope schema version")
    cart: Cart = Field(..., description="Persisted cart")


class AuthState(BaseModel):
    """A notification from the auth state source"""
    model_config = ConfigDict(frozen=True)

    is_loaded: bool = Field(..., description="Whether auth state has hydrated")
    is_signed_in: bool = Field(False, description="Whether a user is signed in")


class SyncState(BaseModel):
    """Transient coordinator state, never persisted"""
    phase: SyncPhase = Field(SyncPhase.IDLE, description="Current coordinator phase")
    pending_auth_transition: Optional[bool] = Field(
        None, description="Latest signed-in target queued behind the current sync"
    )
