"""Shared API dependencies resolving the objects built at startup."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, WebSocket, status

from veil_stage.core.settings import Settings, settings
from veil_stage.interactions.dispatcher import Dispatcher
from veil_stage.services.delivery import DeliveryClient


def get_settings() -> Settings:
    """Return the active settings; tests override this dependency."""
    return settings


def get_dispatcher(request: Request) -> Dispatcher:
    """Get the dispatcher constructed during startup.

    Raises:
        HTTPException: If the application has not finished starting.
    """
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return dispatcher


def get_delivery(request: Request) -> DeliveryClient:
    return request.app.state.delivery


def get_ws_dispatcher(websocket: WebSocket) -> Dispatcher | None:
    """Get the dispatcher for a WebSocket connection; None before startup."""
    return getattr(websocket.app.state, "dispatcher", None)


def get_ws_delivery(websocket: WebSocket) -> DeliveryClient | None:
    return getattr(websocket.app.state, "delivery", None)


SettingsDep = Annotated[Settings, Depends(get_settings)]
DispatcherDep = Annotated[Dispatcher, Depends(get_dispatcher)]
DeliveryDep = Annotated[DeliveryClient, Depends(get_delivery)]
