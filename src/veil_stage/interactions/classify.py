"""Acknowledgment classification of raw interaction payloads.

Classification reads only the routing fields of the payload so the
acknowledgment can be produced before any store, limiter or payload work.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from veil_stage.core.errors import ValidationError
from veil_stage.schemas.interaction import InteractionType, MessageFlags, ResponseType

ACK_DEADLINE_SECONDS = 3.0

ROLL_COMMANDS = frozenset({"roll", "r"})
SECRET_COMMANDS = frozenset({"secret", "s"})
COMMIT_COMMANDS = ROLL_COMMANDS | SECRET_COMMANDS
TIMER_COMMAND = "timer"
HELP_COMMAND = "help"

REVEAL_PREFIX = "reveal:"
TIMER_STOP_PREFIX = "tstop:"
TIMER_RESTART_PREFIX = "trestart:"


class UnsupportedInteractionError(ValidationError):
    """Raised for interaction types the service does not answer."""


@dataclass(frozen=True)
class Classification:
    """Acknowledgment body plus whether processing should follow."""

    ack: dict[str, Any]
    process: bool = True

    @property
    def private(self) -> bool:
        flags = (self.ack.get("data") or {}).get("flags", 0)
        return bool(flags & MessageFlags.EPHEMERAL)

    @property
    def updates_message(self) -> bool:
        return self.ack.get("type") == ResponseType.DEFERRED_UPDATE_MESSAGE


PONG = Classification({"type": int(ResponseType.PONG)}, process=False)


def deferred_reply(*, private: bool) -> Classification:
    ack: dict[str, Any] = {"type": int(ResponseType.DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE)}
    if private:
        ack["data"] = {"flags": int(MessageFlags.EPHEMERAL)}
    return Classification(ack)


def deferred_update() -> Classification:
    return Classification({"type": int(ResponseType.DEFERRED_UPDATE_MESSAGE)})


def is_private_commit(command_name: str | None, options: Mapping[str, Any]) -> bool:
    """Decide whether a commit is hidden.

    ``secret``/``s`` default to hidden and ``roll``/``r`` to public; an explicit
    boolean ``secret`` option wins either way.
    """
    secret = options.get("secret")
    if isinstance(secret, bool):
        return secret
    return (command_name or "").lower() in SECRET_COMMANDS


def _top_level_options(data: Mapping[str, Any]) -> dict[str, Any]:
    options = data.get("options") or []
    return {
        opt["name"]: opt.get("value")
        for opt in options
        if isinstance(opt, Mapping) and "name" in opt
    }


def classify_interaction(raw: Mapping[str, Any]) -> Classification:
    """Return the acknowledgment for a raw interaction payload.

    Raises:
        UnsupportedInteractionError: for unknown interaction types.
    """
    kind = raw.get("type")
    data = raw.get("data") or {}
    if not isinstance(data, Mapping):
        data = {}

    if kind == InteractionType.PING:
        return PONG

    if kind == InteractionType.APPLICATION_COMMAND:
        name = str(data.get("name") or "").lower()
        if name in COMMIT_COMMANDS:
            return deferred_reply(private=is_private_commit(name, _top_level_options(data)))
        if name == HELP_COMMAND:
            return deferred_reply(private=False)
        return deferred_reply(private=True)

    if kind == InteractionType.MESSAGE_COMPONENT:
        custom_id = str(data.get("custom_id") or "")
        if custom_id.startswith(REVEAL_PREFIX):
            return deferred_update()
        return deferred_reply(private=True)

    raise UnsupportedInteractionError(f"Unsupported interaction type: {kind!r}")
