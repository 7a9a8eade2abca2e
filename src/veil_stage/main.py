"""Main entry point for the Veil Stage service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from veil_stage.api.v1 import gateway_router, interactions_router
from veil_stage.core.logging import configure_logging
from veil_stage.core.settings import settings
from veil_stage.interactions.dispatcher import Dispatcher
from veil_stage.interactions.handlers import HandlerServices
from veil_stage.services.delivery import DeliveryClient, RestDeliveryClient
from veil_stage.services.ratelimit import RateLimiter
from veil_stage.services.store_factory import Stores, create_stores

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Veil Stage",
    description="Hidden results with one-time reveal, and recurring channel timers",
    version=settings.app_version,
)

# Include transport routers
app.include_router(interactions_router)
app.include_router(gateway_router)


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging(settings.log_level, json_lines=settings.log_json)

    stores: Stores = getattr(app.state, "stores", None) or create_stores(settings)
    await stores.start()
    delivery: DeliveryClient = getattr(app.state, "delivery", None) or RestDeliveryClient()
    limiter = RateLimiter(
        settings.rate_limit_max_actions,
        settings.rate_limit_window_seconds,
    )
    dispatcher = Dispatcher(
        HandlerServices(sessions=stores.sessions, timers=stores.timers, limiter=limiter)
    )
    await dispatcher.start()

    app.state.stores = stores
    app.state.delivery = delivery
    app.state.limiter = limiter
    app.state.dispatcher = dispatcher
    logger.info(
        "Service started",
        extra={"event": "startup", "backend": stores.backend},
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    dispatcher: Dispatcher | None = getattr(app.state, "dispatcher", None)
    if dispatcher:
        await dispatcher.stop()
    stores: Stores | None = getattr(app.state, "stores", None)
    if stores:
        await stores.close()
    delivery: DeliveryClient | None = getattr(app.state, "delivery", None)
    if delivery:
        await delivery.close()
    for name in ("dispatcher", "stores", "delivery", "limiter"):
        if hasattr(app.state, name):
            delattr(app.state, name)
    logger.info("Service stopped", extra={"event": "shutdown"})


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    stores: Stores | None = getattr(app.state, "stores", None)
    return {"status": "ok", "backend": stores.backend if stores else "starting"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("veil_stage.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
