"""Interaction classification, transport adapters, handlers and dispatch."""

from .classify import Classification, UnsupportedInteractionError, classify_interaction
from .context import GatewayInteractionContext, HttpInteractionContext, InteractionContext
from .dispatcher import Dispatcher
from .handlers import HandlerServices

__all__ = [
    "Classification",
    "UnsupportedInteractionError",
    "classify_interaction",
    "GatewayInteractionContext",
    "HttpInteractionContext",
    "InteractionContext",
    "Dispatcher",
    "HandlerServices",
]
