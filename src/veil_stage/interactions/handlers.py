"""Commit, reveal and help handlers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from veil_stage.core.errors import (
    AuthorizationError,
    NotFoundOrExpiredError,
    RateLimitedError,
    ValidationError,
)
from veil_stage.interactions.classify import REVEAL_PREFIX, is_private_commit
from veil_stage.interactions.context import InteractionContext
from veil_stage.models.session import SessionEntry, new_session_id
from veil_stage.services.collaborators import (
    Formatter,
    PlainFormatter,
    RandomRangeFactory,
    ResultFactory,
)
from veil_stage.services.delivery import DeliveryError, DeliveryTargetGoneError
from veil_stage.services.ratelimit import RateLimiter
from veil_stage.services.scheduler import TimerStore
from veil_stage.services.session_store import SessionStore

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 200
_MENTION_PATTERN = re.compile(r"<(?:@[!&]?|#)\d+>")
_MASS_MENTION_PATTERN = re.compile(r"@(everyone|here)", re.IGNORECASE)
EXPIRED_MESSAGE = "This roll has expired or was already revealed. Please roll again with `/roll`."
REVEAL_EDIT_FAILED_MESSAGE = (
    "Failed to reveal the roll. The original message may have been deleted. "
    "Your result is still hidden."
)
REVEAL_RETRY_MESSAGE = (
    "Failed to reveal the roll. Your result is still hidden, so try again shortly."
)


@dataclass
class HandlerServices:
    """Collaborators shared by every handler."""

    sessions: SessionStore
    timers: TimerStore
    limiter: RateLimiter
    factory: ResultFactory = field(default_factory=RandomRangeFactory)
    formatter: Formatter = field(default_factory=PlainFormatter)


def admit(ctx: InteractionContext, services: HandlerServices) -> None:
    """Consume one admission slot for the actor.

    Raises:
        RateLimitedError: when the actor is over the limit.
    """
    actor_id = ctx.actor.id
    if not services.limiter.consume(actor_id):
        retry_after = services.limiter.retry_after(actor_id)
        logger.info(
            "Rate limited actor",
            extra={"event": "rate-limited", "actor_id": actor_id, "count": retry_after},
        )
        raise RateLimitedError(retry_after)


def sanitize_mentions(text: str) -> str:
    """Neutralize mass mentions and mention markup in user-supplied text."""
    text = _MENTION_PATTERN.sub("[mention]", text)
    return _MASS_MENTION_PATTERN.sub("@\u200b\\1", text)


def _clean_note(raw: object) -> str | None:
    if raw is None:
        return None
    note = sanitize_mentions(str(raw).strip())[:MAX_NOTE_LENGTH]
    return note or None


async def handle_commit(ctx: InteractionContext, services: HandlerServices) -> None:
    """Compute a result and either show it or hide it behind a reveal control."""
    admit(ctx, services)

    expression = ctx.options.get("dice")
    if expression is None or not str(expression).strip():
        raise ValidationError("Provide the dice to roll, for example `d20`.")
    note = _clean_note(ctx.options.get("reason"))
    result = services.factory.produce(str(expression))
    actor = ctx.actor

    if not is_private_commit(ctx.command_name, ctx.options):
        await ctx.edit_reply(services.formatter.public_result(result, note, actor.id))
        logger.info(
            "Public commit",
            extra={"event": "commit-public", "actor_id": actor.id, "scope_id": ctx.scope_id},
        )
        return

    session_id = new_session_id()
    placeholder = services.formatter.placeholder(result.label, note, actor.id, session_id)
    message_id = await ctx.send_to_scope(placeholder)

    entry = SessionEntry(
        id=session_id,
        owner_id=actor.id,
        scope_id=ctx.scope_id,
        payload=dict(result.payload),
        external_ref=message_id,
        owner_tag=actor.tag,
        note=note,
    )
    await services.sessions.put(entry)
    await ctx.edit_reply(services.formatter.private_result(result, note, revealed=False))
    logger.info(
        "Hidden commit stored",
        extra={"event": "commit-hidden", "actor_id": actor.id, "scope_id": ctx.scope_id,
               "session_id": session_id},
    )


async def handle_reveal(ctx: InteractionContext, services: HandlerServices) -> None:
    """Disclose a hidden result once, to its owner, in its channel."""
    session_id = (ctx.custom_id or "")[len(REVEAL_PREFIX):]
    actor = ctx.actor
    log_extra = {"actor_id": actor.id, "scope_id": ctx.scope_id, "session_id": session_id}

    entry = await services.sessions.get(session_id) if session_id else None
    if entry is None:
        logger.info("Reveal target missing", extra={"event": "reveal-failed",
                                                   "reason": "not-found-or-expired",
                                                   **log_extra})
        raise NotFoundOrExpiredError(EXPIRED_MESSAGE)

    if entry.owner_id != actor.id or entry.scope_id != ctx.scope_id:
        logger.info("Reveal denied", extra={"event": "reveal-denied", **log_extra})
        raise AuthorizationError()

    claimed = await services.sessions.claim(session_id)
    if claimed is None:
        logger.info("Reveal lost the claim", extra={"event": "reveal-failed",
                                                   "reason": "claimed-elsewhere",
                                                   **log_extra})
        raise NotFoundOrExpiredError(EXPIRED_MESSAGE)

    try:
        await ctx.edit_scope_message(
            claimed.external_ref, services.formatter.revealed(claimed, actor.id)
        )
    except DeliveryError as exc:
        await services.sessions.put(claimed)
        logger.warning(
            "Placeholder could not be edited; entry restored",
            extra={"event": "reveal-edit-failed", "error": str(exc), **log_extra},
        )
        message = (
            REVEAL_EDIT_FAILED_MESSAGE
            if isinstance(exc, DeliveryTargetGoneError)
            else REVEAL_RETRY_MESSAGE
        )
        await ctx.reply_private(services.formatter.error(message))
        return

    logger.info("Result revealed", extra={"event": "reveal", **log_extra})
    await ctx.reply_private(services.formatter.notice("Your result has been revealed."))


async def handle_help(ctx: InteractionContext, services: HandlerServices) -> None:
    await ctx.edit_reply(services.formatter.help())
