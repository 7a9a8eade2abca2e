import asyncio
import logging

import pytest

from conftest import RecordingContext, make_command, make_component, option
from veil_stage.core.errors import BackendUnavailableError, StaleRequestError
from veil_stage.interactions.classify import classify_interaction
from veil_stage.interactions.dispatcher import (
    BACKEND_UNAVAILABLE_MESSAGE,
    GENERIC_FAILURE_MESSAGE,
    TARGET_GONE_MESSAGE,
    Dispatcher,
)
from veil_stage.schemas.interaction import Interaction
from veil_stage.services.delivery import DeliveryTargetGoneError


@pytest.fixture
def dispatcher(services):
    return Dispatcher(services)


async def _run(dispatcher, ctx, raw):
    await dispatcher.dispatch(ctx, classify_interaction(raw))
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_acknowledges_before_processing(dispatcher, context_for):
    raw = make_command("help")
    ctx = context_for(raw)

    await dispatcher.dispatch(ctx, classify_interaction(raw))

    assert ctx.acks == [{"type": 5}]
    assert ctx.replies == []
    assert dispatcher.pending == 1

    await dispatcher.stop()
    assert "/roll" in ctx.replies[0]["content"]
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_ping_is_not_processed(dispatcher, context_for):
    raw = {"id": "1", "type": 1, "token": "t"}
    ctx = context_for(raw)

    await dispatcher.dispatch(ctx, classify_interaction(raw))

    assert ctx.acks == [{"type": 1}]
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_validation_errors_become_private_replies(dispatcher, context_for):
    raw = make_command("roll")
    ctx = context_for(raw)

    await _run(dispatcher, ctx, raw)

    assert ctx.replies[0]["content"].startswith("⚠️")
    assert "dice" in ctx.replies[0]["content"]


@pytest.mark.asyncio
async def test_unknown_command_and_control(dispatcher, context_for):
    command = make_command("mystery")
    command_ctx = context_for(command)
    control = make_component("nope:1")
    control_ctx = context_for(control)

    await dispatcher.dispatch(command_ctx, classify_interaction(command))
    await dispatcher.dispatch(control_ctx, classify_interaction(control))
    await dispatcher.stop()

    assert "Unknown command" in command_ctx.replies[0]["content"]
    assert "no longer supported" in control_ctx.replies[0]["content"]


@pytest.mark.asyncio
async def test_backend_failure_is_not_reported_as_missing(dispatcher, context_for, session_store,
                                                          mocker):
    mocker.patch.object(session_store, "get", side_effect=BackendUnavailableError("down"))
    raw = make_component("reveal:abc")
    ctx = context_for(raw)

    await _run(dispatcher, ctx, raw)

    # deferred update: the error travels as an ephemeral follow-up
    assert BACKEND_UNAVAILABLE_MESSAGE in ctx.followups[0]["content"]
    assert ctx.followups[0]["flags"] & 64


@pytest.mark.asyncio
async def test_gone_channel_is_reported(dispatcher, context_for, delivery):
    delivery.send_error = DeliveryTargetGoneError("no access")
    raw = make_command("secret", [option("dice", "d20")])
    ctx = context_for(raw)

    await _run(dispatcher, ctx, raw)

    assert TARGET_GONE_MESSAGE in ctx.replies[0]["content"]


@pytest.mark.asyncio
async def test_unexpected_errors_are_logged_and_answered(dispatcher, context_for, mocker, caplog):
    mocker.patch(
        "veil_stage.interactions.dispatcher.handle_help",
        side_effect=KeyError("boom"),
    )
    raw = make_command("help")
    ctx = context_for(raw)

    with caplog.at_level(logging.ERROR, logger="veil_stage.interactions.dispatcher"):
        await _run(dispatcher, ctx, raw)

    assert GENERIC_FAILURE_MESSAGE in ctx.replies[0]["content"]
    assert "Unhandled error" in caplog.text


class StaleContext(RecordingContext):
    async def edit_reply(self, body):
        raise StaleRequestError("too late")


@pytest.mark.asyncio
async def test_stale_replies_are_swallowed(dispatcher, delivery):
    raw = make_command("roll")
    ctx = StaleContext(Interaction.model_validate(raw), delivery)

    await _run(dispatcher, ctx, raw)

    assert ctx.replies == []


@pytest.mark.asyncio
async def test_stop_cancels_stuck_work(dispatcher, context_for, mocker):
    async def stuck(ctx, services):
        await asyncio.sleep(30)

    mocker.patch.object(dispatcher, "route", return_value=stuck)
    raw = make_command("help")
    ctx = context_for(raw)

    await dispatcher.dispatch(ctx, classify_interaction(raw))
    await dispatcher.stop(timeout=0.05)

    assert dispatcher.pending == 0
    assert dispatcher.schedule(ctx) is None
