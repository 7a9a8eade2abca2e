"""
Pydantic schemas for inbound interactions and gateway frames.

These schemas describe the subset of the platform payload the service reads.
"""

from .interaction import (
    CommandOption,
    GatewayFrame,
    Interaction,
    InteractionData,
    InteractionType,
    InteractionUser,
    MessageFlags,
    ResponseType,
)

__all__ = [
    "CommandOption",
    "GatewayFrame",
    "Interaction",
    "InteractionData",
    "InteractionType",
    "InteractionUser",
    "MessageFlags",
    "ResponseType",
]
