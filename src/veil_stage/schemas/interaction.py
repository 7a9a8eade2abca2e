"""Pydantic schemas for platform interaction payloads."""

from __future__ import annotations

from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InteractionType(IntEnum):
    PING = 1
    APPLICATION_COMMAND = 2
    MESSAGE_COMPONENT = 3


class ResponseType(IntEnum):
    PONG = 1
    CHANNEL_MESSAGE_WITH_SOURCE = 4
    DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE = 5
    DEFERRED_UPDATE_MESSAGE = 6


class MessageFlags(IntEnum):
    EPHEMERAL = 64


class _Payload(BaseModel):
    """Lenient base: unknown platform fields are kept, snowflakes become strings."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class InteractionUser(_Payload):
    id: str
    username: str = ""
    global_name: str | None = None

    @property
    def tag(self) -> str:
        return self.global_name or self.username or self.id


class InteractionMember(_Payload):
    user: InteractionUser | None = None
    nick: str | None = None


class CommandOption(_Payload):
    name: str
    type: int = 3
    value: Any = None
    options: list[CommandOption] = Field(default_factory=list)


class InteractionData(_Payload):
    name: str | None = None
    custom_id: str | None = None
    component_type: int | None = None
    options: list[CommandOption] = Field(default_factory=list)


class Interaction(_Payload):
    """Inbound interaction as delivered by either transport."""

    id: str
    type: int
    token: str = ""
    application_id: str | None = None
    guild_id: str | None = None
    channel_id: str | None = None
    member: InteractionMember | None = None
    user: InteractionUser | None = None
    data: InteractionData | None = None

    @property
    def actor(self) -> InteractionUser | None:
        """Return the acting user; guild payloads nest it under ``member``."""
        if self.member is not None and self.member.user is not None:
            return self.member.user
        return self.user


class GatewayFrame(BaseModel):
    """Frame exchanged with the relay over the persistent connection."""

    op: str = Field(..., description="Frame kind: interaction, ack, reply, followup or error.")
    id: str | None = Field(default=None, description="Interaction id the frame refers to.")
    d: dict[str, Any] | None = Field(default=None, description="Frame payload.")

    model_config = ConfigDict(coerce_numbers_to_str=True)
