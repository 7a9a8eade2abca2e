"""
Persistent-connection transport.

A relay forwards interactions as ``{"op": "interaction", "d": ...}`` frames;
acknowledgments and replies travel back on the same socket as ``ack``,
``reply`` and ``followup`` frames. Malformed frames get an ``error`` frame.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from veil_stage.api.v1.dependencies import get_ws_delivery, get_ws_dispatcher
from veil_stage.core.errors import StaleRequestError
from veil_stage.interactions.classify import UnsupportedInteractionError, classify_interaction
from veil_stage.interactions.context import FrameSender, GatewayInteractionContext
from veil_stage.interactions.dispatcher import Dispatcher
from veil_stage.schemas.interaction import GatewayFrame, Interaction
from veil_stage.services.delivery import DeliveryClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["gateway"])

INTERACTION_OP = "interaction"


def _frame_sender(websocket: WebSocket) -> FrameSender:
    lock = asyncio.Lock()

    async def send(frame: dict[str, Any]) -> None:
        async with lock:
            try:
                await websocket.send_json(frame)
            except (WebSocketDisconnect, RuntimeError) as exc:
                raise StaleRequestError("Gateway connection is closed") from exc

    return send


async def _send_error(send: FrameSender, frame_id: str | None, message: str) -> None:
    await send({"op": "error", "id": frame_id, "d": {"message": message}})


async def handle_frame(
    text: str,
    *,
    send: FrameSender,
    dispatcher: Dispatcher,
    delivery: DeliveryClient,
) -> None:
    """Handle one inbound frame; malformed frames are answered and dropped."""
    try:
        frame = GatewayFrame.model_validate(json.loads(text))
    except (json.JSONDecodeError, PydanticValidationError):
        logger.warning("Malformed gateway frame", extra={"event": "gateway-frame-malformed"})
        await _send_error(send, None, "Malformed frame")
        return

    if frame.op != INTERACTION_OP or frame.d is None:
        await _send_error(send, frame.id, f"Unsupported frame op: {frame.op}")
        return

    try:
        classification = classify_interaction(frame.d)
        interaction = Interaction.model_validate(frame.d)
    except UnsupportedInteractionError as exc:
        await _send_error(send, frame.id, str(exc))
        return
    except PydanticValidationError:
        await _send_error(send, frame.id, "Malformed interaction payload")
        return

    ctx = GatewayInteractionContext(interaction, delivery, send)
    await dispatcher.dispatch(ctx, classification)


@router.websocket("/gateway")
async def gateway(websocket: WebSocket) -> None:
    """Relay connection carrying interactions in both directions."""
    dispatcher = get_ws_dispatcher(websocket)
    delivery = get_ws_delivery(websocket)
    if dispatcher is None or delivery is None:
        await websocket.close(code=1013)
        return

    await websocket.accept()
    send = _frame_sender(websocket)
    logger.info("Gateway relay connected", extra={"event": "gateway-connected"})
    try:
        while True:
            text = await websocket.receive_text()
            try:
                await handle_frame(text, send=send, dispatcher=dispatcher, delivery=delivery)
            except StaleRequestError:
                break
    except WebSocketDisconnect:
        pass
    logger.info("Gateway relay disconnected", extra={"event": "gateway-disconnected"})
