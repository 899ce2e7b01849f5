"""
FastAPI application serving authoritative carts from Redis.

This is the read/write contract HttpCartGateway talks to. The caller's
identity arrives in the X-User-ID header, set by the auth proxy in front.
"""
import time
import logging
from functools import lru_cache
from fastapi import Depends, FastAPI, HTTPException, Header
from fastapi.responses import JSONResponse

from cartsync.config import Config
from cartsync.models import Cart
from cartsync.cart_repository import CartRepository
from cartsync.exceptions import (
    CartNotFoundError,
    ValidationError,
    LimitExceededError,
    RedisConnectionError
)
from cartsync.middleware import MetricsMiddleware

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Cart API",
    description="Authoritative cart storage for signed-in shoppers",
    version="1.0.0"
)

app.add_middleware(MetricsMiddleware)


@lru_cache(maxsize=1)
def get_cart_repository() -> CartRepository:
    return CartRepository()


def require_user_id(user_id: str = Header(None, alias="X-User-ID", description="User identifier")) -> str:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail="User ID is required")
    return user_id.strip()


# Health check endpoint for ALB
@app.get("/health")
async def health_check(repository: CartRepository = Depends(get_cart_repository)):
    """Report Redis connectivity; 200 as long as a client could be built"""
    ping_start = time.time()
    redis_ok = repository.redis.ping()
    redis_latency_ms = round((time.time() - ping_start) * 1000, 2)

    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": "cart-api",
            "redis": {
                "status": "healthy" if redis_ok else "unhealthy",
                "latency_ms": redis_latency_ms if redis_ok else None
            },
            "timestamp": time.time()
        }
    )


@app.get("/cart", response_model=Cart)
async def get_cart(
    user_id: str = Depends(require_user_id),
    repository: CartRepository = Depends(get_cart_repository)
):
    """Get the caller's cart; 404 when none has been stored"""
    return repository.get_cart(user_id)


@app.put("/cart", response_model=Cart)
async def replace_cart(
    cart: Cart,
    user_id: str = Depends(require_user_id),
    repository: CartRepository = Depends(get_cart_repository)
):
    """Replace the caller's cart and return what was stored"""
    return repository.replace_cart(user_id, cart)


@app.delete("/cart")
async def clear_cart(
    user_id: str = Depends(require_user_id),
    repository: CartRepository = Depends(get_cart_repository)
):
    removed = repository.clear_cart(user_id)
    return {"success": True, "removed": removed}


# Error handlers
@app.exception_handler(CartNotFoundError)
async def cart_not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Cart not found", "message": "No cart stored for this user"}
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": str(exc)}
    )


@app.exception_handler(LimitExceededError)
async def limit_exceeded_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Limit exceeded", "message": str(exc)}
    )


@app.exception_handler(RedisConnectionError)
async def redis_error_handler(request, exc):
    logger.error(f"Redis unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "message": "Redis connection failed"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
