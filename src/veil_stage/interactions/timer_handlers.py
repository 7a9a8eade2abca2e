"""Timer command and button handlers."""

from __future__ import annotations

import logging
from typing import Any

from veil_stage.core.errors import AuthorizationError, NotFoundOrExpiredError, ValidationError
from veil_stage.interactions.classify import TIMER_RESTART_PREFIX, TIMER_STOP_PREFIX
from veil_stage.interactions.context import InteractionContext
from veil_stage.interactions.handlers import HandlerServices, admit, sanitize_mentions
from veil_stage.models.timer import FinishReason, ScheduledTimer, TimerConfig

logger = logging.getLogger(__name__)

GUILD_ONLY_MESSAGE = "Timers can only be used in a server (guild)."
STOP_USAGE_MESSAGE = (
    "Please specify `timer_id` to stop a specific timer, or `all:true` to stop all "
    "timers in this channel.\n\nUse `/timer list` to see active timers and their IDs."
)


def _int_option(options: dict[str, Any], name: str) -> int | None:
    value = options.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"`{name}` must be a whole number.") from exc


def _not_found(timer_id: int) -> NotFoundOrExpiredError:
    return NotFoundOrExpiredError(
        f"Timer #{timer_id} was not found. It may have already completed or been stopped."
    )


async def _start(
    ctx: InteractionContext,
    services: HandlerServices,
    *,
    name: str,
    interval_minutes: int,
    max_occurrences: int | None,
    event: str,
) -> ScheduledTimer:
    guild_id = ctx.guild_id
    if not guild_id:
        raise ValidationError(GUILD_ONLY_MESSAGE)

    formatter = services.formatter

    async def on_tick(timer: ScheduledTimer) -> None:
        await ctx.send_to_scope(formatter.timer_tick(timer))

    async def on_finish(timer: ScheduledTimer, reason: FinishReason) -> None:
        await ctx.send_to_scope(formatter.timer_finished(timer, reason))

    config = TimerConfig(
        guild_id=guild_id,
        scope_id=ctx.scope_id,
        name=name,
        interval_minutes=interval_minutes,
        max_occurrences=max_occurrences,
        owner_id=ctx.actor.id,
    )
    timer = await services.timers.create(config, on_tick, on_finish)
    logger.info(
        "Timer created",
        extra={"event": event, "timer_id": timer.id, "scope_id": timer.scope_id,
               "guild_id": guild_id, "actor_id": ctx.actor.id},
    )
    await ctx.edit_reply(formatter.timer_started(timer))
    return timer


async def handle_timer_start(ctx: InteractionContext, services: HandlerServices) -> None:
    admit(ctx, services)
    interval = _int_option(ctx.options, "interval")
    if interval is None:
        raise ValidationError("Please provide an `interval` in minutes.")
    name = sanitize_mentions(str(ctx.options.get("name") or "").strip())
    await _start(
        ctx,
        services,
        name=name,
        interval_minutes=interval,
        max_occurrences=_int_option(ctx.options, "repeat"),
        event="timer-created",
    )


async def _stop_one(ctx: InteractionContext, services: HandlerServices, timer_id: int) -> None:
    timer = await services.timers.get(timer_id)
    if timer is None:
        raise _not_found(timer_id)
    if timer.scope_id != ctx.scope_id:
        logger.info(
            "Timer stop denied outside its channel",
            extra={"event": "timer-stop-denied", "timer_id": timer_id,
                   "scope_id": ctx.scope_id, "actor_id": ctx.actor.id},
        )
        raise AuthorizationError()
    stopped = await services.timers.stop(timer_id)
    if stopped is None:
        raise _not_found(timer_id)
    logger.info(
        "Timer stopped",
        extra={"event": "timer-stopped", "timer_id": timer_id, "scope_id": ctx.scope_id,
               "actor_id": ctx.actor.id},
    )
    await ctx.edit_reply(
        services.formatter.timer_stopped(f"timer #{stopped.id} **{stopped.name}**")
    )


async def handle_timer_stop(ctx: InteractionContext, services: HandlerServices) -> None:
    timer_id = _int_option(ctx.options, "timer_id")
    stop_all = bool(ctx.options.get("all"))

    if stop_all:
        count = await services.timers.stop_all_in_scope(ctx.scope_id)
        logger.info(
            "Stopped all timers in scope",
            extra={"event": "timer-stop-all", "scope_id": ctx.scope_id,
                   "actor_id": ctx.actor.id, "count": count},
        )
        if count == 0:
            raise NotFoundOrExpiredError("No active timers in this channel.")
        plural = "s" if count != 1 else ""
        await ctx.edit_reply(services.formatter.timer_stopped(f"{count} timer{plural}"))
        return

    if timer_id is None:
        raise ValidationError(STOP_USAGE_MESSAGE)
    await _stop_one(ctx, services, timer_id)


async def handle_timer_list(ctx: InteractionContext, services: HandlerServices) -> None:
    timers = await services.timers.list_by_scope(ctx.scope_id)
    await ctx.edit_reply(services.formatter.timer_list(timers))


TIMER_SUBCOMMANDS = {
    "start": handle_timer_start,
    "stop": handle_timer_stop,
    "list": handle_timer_list,
}


async def handle_timer_command(ctx: InteractionContext, services: HandlerServices) -> None:
    handler = TIMER_SUBCOMMANDS.get(str(ctx.options.get("subcommand") or ""))
    if handler is None:
        raise ValidationError("Unknown timer subcommand. Use start, stop or list.")
    await handler(ctx, services)


async def handle_stop_button(ctx: InteractionContext, services: HandlerServices) -> None:
    raw_id = (ctx.custom_id or "")[len(TIMER_STOP_PREFIX):]
    try:
        timer_id = int(raw_id)
    except ValueError as exc:
        raise ValidationError("Invalid timer button.") from exc

    if await services.timers.get(timer_id) is None:
        raise NotFoundOrExpiredError("This timer has already been stopped or completed.")
    await _stop_one(ctx, services, timer_id)


def parse_restart_id(custom_id: str) -> tuple[int, int | None, str]:
    """Parse ``trestart:<id>:<interval>:<repeat|0>:<name>`` into its settings.

    The name is last and may itself contain colons.
    """
    parts = custom_id[len(TIMER_RESTART_PREFIX):].split(":", 3)
    if len(parts) != 4:
        raise ValidationError("Invalid restart button.")
    _, interval_raw, repeat_raw, name = parts
    try:
        interval = int(interval_raw)
        repeat = int(repeat_raw)
    except ValueError as exc:
        raise ValidationError("Invalid restart button parameters.") from exc
    if not name:
        raise ValidationError("Invalid restart button parameters.")
    return interval, (repeat if repeat > 0 else None), name


async def handle_restart_button(ctx: InteractionContext, services: HandlerServices) -> None:
    interval, repeat, name = parse_restart_id(ctx.custom_id or "")
    admit(ctx, services)
    await _start(
        ctx,
        services,
        name=name,
        interval_minutes=interval,
        max_occurrences=repeat,
        event="timer-restarted",
    )
