"""Interaction dispatcher: acknowledge first, then process in the background."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from veil_stage.core.errors import (
    AuthorizationError,
    BackendUnavailableError,
    NotFoundOrExpiredError,
    StaleRequestError,
    ValidationError,
)
from veil_stage.interactions.classify import (
    COMMIT_COMMANDS,
    HELP_COMMAND,
    REVEAL_PREFIX,
    TIMER_COMMAND,
    TIMER_RESTART_PREFIX,
    TIMER_STOP_PREFIX,
    Classification,
)
from veil_stage.interactions.context import InteractionContext
from veil_stage.interactions.handlers import (
    HandlerServices,
    handle_commit,
    handle_help,
    handle_reveal,
)
from veil_stage.interactions.timer_handlers import (
    handle_restart_button,
    handle_stop_button,
    handle_timer_command,
)
from veil_stage.schemas.interaction import InteractionType
from veil_stage.services.delivery import DeliveryError, DeliveryTargetGoneError

logger = logging.getLogger(__name__)

Handler = Callable[[InteractionContext, HandlerServices], Awaitable[None]]

DRAIN_TIMEOUT_SECONDS = 5.0

BACKEND_UNAVAILABLE_MESSAGE = (
    "The service is temporarily unavailable. Please try again in a moment."
)
TARGET_GONE_MESSAGE = (
    "I could not post in this channel. Check that I can still send messages here."
)
GENERIC_FAILURE_MESSAGE = "Something went wrong while handling that. Please try again."
UNKNOWN_COMMAND_MESSAGE = "Unknown command."
UNKNOWN_CONTROL_MESSAGE = "This control is no longer supported."

COMPONENT_HANDLERS: tuple[tuple[str, Handler], ...] = (
    (REVEAL_PREFIX, handle_reveal),
    (TIMER_STOP_PREFIX, handle_stop_button),
    (TIMER_RESTART_PREFIX, handle_restart_button),
)


class Dispatcher:
    """Route acknowledged interactions to their handlers.

    Processing runs as tracked tasks so shutdown can drain or cancel them.
    """

    def __init__(self, services: HandlerServices) -> None:
        self.services = services
        self._tasks: set[asyncio.Task[None]] = set()
        self._accepting = True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        self._accepting = True

    async def stop(self, timeout: float = DRAIN_TIMEOUT_SECONDS) -> None:
        """Wait briefly for in-flight processing, then cancel what remains."""
        self._accepting = False
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(
                "Cancelled %d unfinished interaction task(s)",
                len(still_running),
                extra={"event": "dispatcher-drain-cancelled", "count": len(still_running)},
            )

    async def acknowledge(self, ctx: InteractionContext, classification: Classification) -> None:
        """Send the acknowledgment; a stale interaction is logged and ignored."""
        try:
            await ctx.acknowledge(classification.ack)
        except StaleRequestError as exc:
            logger.warning(
                "Acknowledgment arrived too late",
                extra={"event": "ack-stale", "interaction_id": ctx.interaction_id,
                       "error": str(exc)},
            )

    async def dispatch(self, ctx: InteractionContext, classification: Classification) -> None:
        """Acknowledge, then schedule processing when the classification asks for it."""
        await self.acknowledge(ctx, classification)
        if classification.process:
            self.schedule(ctx)

    def schedule(self, ctx: InteractionContext) -> asyncio.Task[None] | None:
        """Run :meth:`process` as a tracked background task."""
        if not self._accepting:
            logger.warning(
                "Dropping interaction during shutdown",
                extra={"event": "dispatch-rejected", "interaction_id": ctx.interaction_id},
            )
            return None
        task = asyncio.create_task(self.process(ctx))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def route(self, ctx: InteractionContext) -> Handler | None:
        kind = ctx.interaction.type
        if kind == InteractionType.APPLICATION_COMMAND:
            name = ctx.command_name
            if name in COMMIT_COMMANDS:
                return handle_commit
            if name == TIMER_COMMAND:
                return handle_timer_command
            if name == HELP_COMMAND:
                return handle_help
        elif kind == InteractionType.MESSAGE_COMPONENT:
            custom_id = ctx.custom_id or ""
            for prefix, handler in COMPONENT_HANDLERS:
                if custom_id.startswith(prefix):
                    return handler
        return None

    async def process(self, ctx: InteractionContext) -> None:
        """Run the handler and turn failures into replies for the actor."""
        log_extra = {
            "interaction_id": ctx.interaction_id,
            "interaction_type": ctx.interaction.type,
            "command": ctx.command_name,
            "custom_id": ctx.custom_id,
            "actor_id": ctx.actor.id,
            "scope_id": ctx.scope_id,
        }
        handler = self.route(ctx)
        try:
            if handler is None:
                is_component = ctx.interaction.type == InteractionType.MESSAGE_COMPONENT
                raise ValidationError(
                    UNKNOWN_CONTROL_MESSAGE if is_component else UNKNOWN_COMMAND_MESSAGE
                )
            await handler(ctx, self.services)
        except (ValidationError, AuthorizationError, NotFoundOrExpiredError) as exc:
            await self._report(ctx, str(exc))
        except BackendUnavailableError as exc:
            logger.error(
                "Backend unavailable while processing interaction",
                extra={"event": "backend-unavailable", "error": str(exc), **log_extra},
            )
            await self._report(ctx, BACKEND_UNAVAILABLE_MESSAGE)
        except StaleRequestError as exc:
            logger.warning(
                "Interaction expired before the reply",
                extra={"event": "reply-stale", "error": str(exc), **log_extra},
            )
        except DeliveryTargetGoneError as exc:
            logger.warning(
                "Delivery target gone",
                extra={"event": "delivery-target-gone", "error": str(exc), **log_extra},
            )
            await self._report(ctx, TARGET_GONE_MESSAGE)
        except DeliveryError as exc:
            logger.error(
                "Delivery failed while processing interaction",
                extra={"event": "delivery-failed", "error": str(exc), **log_extra},
            )
            await self._report(ctx, GENERIC_FAILURE_MESSAGE)
        except Exception as exc:
            logger.exception(
                "Unhandled error while processing interaction",
                extra={"event": "interaction-failed", "error": str(exc), **log_extra},
            )
            await self._report(ctx, GENERIC_FAILURE_MESSAGE)

    async def _report(self, ctx: InteractionContext, message: str) -> None:
        try:
            await ctx.reply_private(self.services.formatter.error(message))
        except StaleRequestError:
            logger.warning(
                "Could not report error; interaction expired",
                extra={"event": "reply-stale", "interaction_id": ctx.interaction_id},
            )
        except DeliveryError as exc:
            logger.error(
                "Could not report error to actor",
                extra={"event": "error-report-failed", "interaction_id": ctx.interaction_id,
                       "error": str(exc)},
            )
