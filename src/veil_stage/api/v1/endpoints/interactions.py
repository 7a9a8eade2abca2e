"""One-shot signed HTTP interaction endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from veil_stage.api.v1.dependencies import DeliveryDep, DispatcherDep, SettingsDep
from veil_stage.core.security import verify_interaction
from veil_stage.interactions.classify import UnsupportedInteractionError, classify_interaction
from veil_stage.interactions.context import HttpInteractionContext, InteractionContext
from veil_stage.interactions.dispatcher import Dispatcher
from veil_stage.schemas.interaction import Interaction

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature-Ed25519"
TIMESTAMP_HEADER = "X-Signature-Timestamp"

router = APIRouter(tags=["interactions"])


async def _process_after_response(dispatcher: Dispatcher, ctx: InteractionContext) -> None:
    dispatcher.schedule(ctx)


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


@router.post("/interactions")
async def receive_interaction(
    request: Request,
    background_tasks: BackgroundTasks,
    config: SettingsDep,
    dispatcher: DispatcherDep,
    delivery: DeliveryDep,
) -> JSONResponse:
    """Verify, classify and acknowledge an interaction.

    The response body is the acknowledgment; processing is scheduled once the
    response has been produced.

    Raises:
        HTTPException: 503 without a configured key, 401 on a missing or bad
            signature, 400 on a malformed or unsupported payload.
    """
    if not config.public_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Interactions public key is not configured",
        )

    signature = request.headers.get(SIGNATURE_HEADER)
    timestamp = request.headers.get(TIMESTAMP_HEADER)
    if not signature or not timestamp:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing request signature",
        )

    raw_body = await request.body()
    if not verify_interaction(raw_body, signature, timestamp, config.public_key):
        logger.warning(
            "Rejected interaction with invalid signature",
            extra={"event": "signature-invalid"},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid request signature",
        )

    try:
        payload: Any = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise _bad_request("Malformed JSON body") from exc
    if not isinstance(payload, dict):
        raise _bad_request("Interaction body must be an object")

    try:
        classification = classify_interaction(payload)
    except UnsupportedInteractionError as exc:
        raise _bad_request(str(exc)) from exc

    if not classification.process:
        return JSONResponse(content=classification.ack)

    try:
        interaction = Interaction.model_validate(payload)
    except PydanticValidationError as exc:
        raise _bad_request("Malformed interaction payload") from exc

    ctx = HttpInteractionContext(interaction, delivery)
    await dispatcher.acknowledge(ctx, classification)
    background_tasks.add_task(_process_after_response, dispatcher, ctx)
    logger.debug(
        "Acknowledged interaction",
        extra={"event": "interaction-acknowledged", "interaction_id": interaction.id,
               "interaction_type": interaction.type},
    )
    return JSONResponse(content=classification.ack)
