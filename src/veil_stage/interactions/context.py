"""Transport adapters presenting one interaction to the domain handlers.

Handlers are written once against :class:`InteractionContext`; the HTTP and
gateway transports differ only in how acknowledgments and replies travel.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from veil_stage.schemas.interaction import (
    CommandOption,
    Interaction,
    MessageFlags,
    ResponseType,
)
from veil_stage.services.delivery import DeliveryClient

SUBCOMMAND_TYPES = (1, 2)  # SUB_COMMAND, SUB_COMMAND_GROUP


@dataclass(frozen=True)
class Actor:
    id: str
    tag: str


def flatten_options(options: list[CommandOption]) -> dict[str, Any]:
    """Flatten nested command options, recording the innermost subcommand."""
    flat: dict[str, Any] = {}
    for option in options:
        if option.type in SUBCOMMAND_TYPES:
            flat["subcommand"] = option.name
            flat.update(flatten_options(option.options))
        else:
            flat[option.name] = option.value
    return flat


def ephemeral(body: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``body`` flagged as visible to the actor only."""
    flagged = dict(body)
    flagged["flags"] = int(flagged.get("flags", 0)) | int(MessageFlags.EPHEMERAL)
    return flagged


class InteractionContext(ABC):
    """Uniform view of an acknowledged interaction."""

    def __init__(self, interaction: Interaction, delivery: DeliveryClient) -> None:
        self.interaction = interaction
        self.delivery = delivery
        data = interaction.data
        self.options: dict[str, Any] = flatten_options(data.options) if data else {}
        self.ack: dict[str, Any] | None = None

    @property
    def interaction_id(self) -> str:
        return self.interaction.id

    @property
    def token(self) -> str:
        return self.interaction.token

    @property
    def actor(self) -> Actor:
        user = self.interaction.actor
        if user is None:
            return Actor(id="", tag="")
        return Actor(id=user.id, tag=user.tag)

    @property
    def scope_id(self) -> str:
        return self.interaction.channel_id or ""

    @property
    def guild_id(self) -> str | None:
        return self.interaction.guild_id

    @property
    def command_name(self) -> str | None:
        data = self.interaction.data
        return data.name.lower() if data and data.name else None

    @property
    def custom_id(self) -> str | None:
        data = self.interaction.data
        return data.custom_id if data else None

    @property
    def updates_message(self) -> bool:
        """True when the acknowledgment deferred an update of the clicked message."""
        return bool(self.ack) and self.ack.get("type") == ResponseType.DEFERRED_UPDATE_MESSAGE

    @abstractmethod
    async def acknowledge(self, ack: Mapping[str, Any]) -> None:
        """Send the acknowledgment body."""

    @abstractmethod
    async def edit_reply(self, body: Mapping[str, Any]) -> None:
        """Replace the deferred acknowledgment with real content."""

    @abstractmethod
    async def follow_up(self, body: Mapping[str, Any]) -> None:
        """Send an additional reply to the interaction."""

    async def reply_private(self, body: Mapping[str, Any]) -> None:
        """Answer the actor only.

        A deferred reply was already acknowledged with its visibility, so the
        reply itself is edited; a deferred update needs an ephemeral follow-up.
        """
        if self.updates_message:
            await self.follow_up(ephemeral(body))
        else:
            await self.edit_reply(body)

    async def send_to_scope(self, body: Mapping[str, Any]) -> str:
        """Publish a message to the interaction's channel and return its id."""
        return await self.delivery.send_message(self.scope_id, body)

    async def edit_scope_message(self, message_id: str, body: Mapping[str, Any]) -> None:
        await self.delivery.edit_message(self.scope_id, message_id, body)


class HttpInteractionContext(InteractionContext):
    """Context for the one-shot signed HTTP transport.

    The acknowledgment is the synchronous HTTP response, so ``acknowledge``
    only records it; replies go through the webhook routes keyed by the
    interaction token.
    """

    async def acknowledge(self, ack: Mapping[str, Any]) -> None:
        self.ack = dict(ack)

    async def edit_reply(self, body: Mapping[str, Any]) -> None:
        await self.delivery.edit_original(self.token, body)

    async def follow_up(self, body: Mapping[str, Any]) -> None:
        await self.delivery.create_followup(self.token, body)


FrameSender = Callable[[dict[str, Any]], Awaitable[None]]


class GatewayInteractionContext(InteractionContext):
    """Context for the persistent connection; replies travel back as frames."""

    def __init__(
        self,
        interaction: Interaction,
        delivery: DeliveryClient,
        send_frame: FrameSender,
    ) -> None:
        super().__init__(interaction, delivery)
        self._send_frame = send_frame

    async def _send(self, op: str, body: Mapping[str, Any]) -> None:
        await self._send_frame({"op": op, "id": self.interaction_id, "d": dict(body)})

    async def acknowledge(self, ack: Mapping[str, Any]) -> None:
        self.ack = dict(ack)
        await self._send("ack", ack)

    async def edit_reply(self, body: Mapping[str, Any]) -> None:
        await self._send("reply", body)

    async def follow_up(self, body: Mapping[str, Any]) -> None:
        await self._send("followup", body)
