"""Transport endpoint modules for version 1."""

from .gateway import router as gateway_router
from .interactions import router as interactions_router

__all__ = [
    "gateway_router",
    "interactions_router",
]
