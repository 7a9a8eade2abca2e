"""Outbound delivery of messages to the platform.

This module provides the REST client the dispatcher uses to publish and edit
public messages and to answer interactions after they were acknowledged:

- Channel routes (publish / edit) authenticate with the bot token
- Webhook routes (edit original reply / follow up) authenticate with the
  per-interaction token carried in the original payload
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from veil_stage.core.errors import StaleRequestError, VeilError
from veil_stage.core.settings import settings

# HTTP status codes
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_MULTIPLE_CHOICES = 300


class DeliveryError(VeilError):
    """Raised when a message could not be delivered."""


class DeliveryTargetGoneError(DeliveryError):
    """Raised when the target channel or message no longer accepts writes."""


@runtime_checkable
class DeliveryClient(Protocol):
    """Narrow interface the dispatcher uses to reach users."""

    async def send_message(self, channel_id: str, body: Mapping[str, Any]) -> str: ...

    async def edit_message(
        self, channel_id: str, message_id: str, body: Mapping[str, Any]
    ) -> None: ...

    async def edit_original(self, token: str, body: Mapping[str, Any]) -> None: ...

    async def create_followup(self, token: str, body: Mapping[str, Any]) -> None: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class DeliveryConfig:
    """Immutable configuration for outbound delivery."""

    base_url: str
    application_id: str | None
    bot_token: str | None
    timeout_seconds: float


def load_delivery_config() -> DeliveryConfig:
    """Build configuration object from global settings."""

    return DeliveryConfig(
        base_url=settings.api_base_url,
        application_id=settings.application_id,
        bot_token=settings.bot_token,
        timeout_seconds=float(settings.delivery_timeout_seconds),
    )


class RestDeliveryClient:
    """HTTP client wrapper for the platform's REST API."""

    def __init__(
        self,
        config: DeliveryConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_delivery_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        """Close the underlying connection pool."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    def _bot_headers(self) -> dict[str, str]:
        if not self.config.bot_token:
            raise DeliveryError("Bot token is not configured")
        return {"Authorization": f"Bot {self.config.bot_token}"}

    def _webhook_path(self, token: str) -> str:
        if not self.config.application_id:
            raise DeliveryError("Application id is not configured")
        return f"/webhooks/{self.config.application_id}/{token}"

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""
        method: str
        path: str
        json_data: Any | None = None
        headers: dict[str, str] | None = None
        webhook: bool = False

    async def _request(self, params: RequestParams) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                headers=params.headers,
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Delivery request failed: {exc}") from exc

        if response.status_code < HTTP_MULTIPLE_CHOICES:
            return response

        if params.webhook and response.status_code == HTTP_NOT_FOUND:
            raise StaleRequestError("Interaction token is no longer valid")
        if response.status_code in (HTTP_FORBIDDEN, HTTP_NOT_FOUND):
            raise DeliveryTargetGoneError(
                f"Delivery target rejected the request ({response.status_code})"
            )
        raise DeliveryError(f"Platform responded with {response.status_code}")

    async def send_message(self, channel_id: str, body: Mapping[str, Any]) -> str:
        """Publish a message to a channel and return the new message id."""
        response = await self._request(
            self.RequestParams(
                method="POST",
                path=f"/channels/{channel_id}/messages",
                json_data=dict(body),
                headers=self._bot_headers(),
            )
        )
        try:
            return str(response.json()["id"])
        except (ValueError, KeyError, TypeError) as exc:
            raise DeliveryError("Platform did not return a message id") from exc

    async def edit_message(
        self, channel_id: str, message_id: str, body: Mapping[str, Any]
    ) -> None:
        await self._request(
            self.RequestParams(
                method="PATCH",
                path=f"/channels/{channel_id}/messages/{message_id}",
                json_data=dict(body),
                headers=self._bot_headers(),
            )
        )

    async def edit_original(self, token: str, body: Mapping[str, Any]) -> None:
        """Replace the deferred acknowledgment with real content."""
        await self._request(
            self.RequestParams(
                method="PATCH",
                path=f"{self._webhook_path(token)}/messages/@original",
                json_data=dict(body),
                webhook=True,
            )
        )

    async def create_followup(self, token: str, body: Mapping[str, Any]) -> None:
        await self._request(
            self.RequestParams(
                method="POST",
                path=self._webhook_path(token),
                json_data=dict(body),
                webhook=True,
            )
        )
