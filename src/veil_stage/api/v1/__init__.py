"""Version 1 transport endpoints."""

from .endpoints import gateway_router, interactions_router

__all__ = [
    "gateway_router",
    "interactions_router",
]
