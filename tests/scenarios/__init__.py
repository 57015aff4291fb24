"""End-to-end scenario tests for the ASGI idempotency middleware.

Each scenario drives a FastAPI application through the middleware and
checks one aspect of idempotency handling.
"""
