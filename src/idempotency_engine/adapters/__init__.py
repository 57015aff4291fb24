"""Framework adapters for the idempotency engine.

- asgi.py: ASGI middleware for FastAPI, Starlette, etc.
"""

from idempotency_engine.adapters.asgi import ASGIIdempotencyMiddleware

__all__ = ["ASGIIdempotencyMiddleware"]
