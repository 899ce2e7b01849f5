"""
Custom exceptions for the cart reconciliation engine.
"""
from typing import Optional

class CartException(Exception):
    """Base exception for cart operations"""
    pass

class CartNotFoundError(CartException):
    """Raised when no authoritative cart exists for an identity"""
    def __init__(self, owner: str):
        self.owner = owner
        super().__init__(f"Cart not found: {owner}")

class ValidationError(CartException):
    """Raised when validation fails"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

class LimitExceededError(CartException):
    """Raised when cart limits are exceeded"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

class ProductNotFoundError(CartException):
    """Raised when a product is not found in cart"""
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found in cart: {product_id}")

class PersistenceCorruptionError(CartException):
    """Raised when a stored cart envelope cannot be used"""
    pass

class GatewayUnavailableError(CartException):
    """Raised when the remote cart API fails, times out or answers non-2xx"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

class RedisConnectionError(CartException):
    """Raised when Redis connection fails"""
    pass
