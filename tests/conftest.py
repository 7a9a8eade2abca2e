from __future__ import annotations

import json
import os
import time
from collections.abc import Callable, Iterator, Mapping
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

os.environ.setdefault("LOG_JSON", "false")

from veil_stage.api.v1.dependencies import get_settings
from veil_stage.core.settings import Settings
from veil_stage.interactions.context import InteractionContext
from veil_stage.interactions.handlers import HandlerServices
from veil_stage.main import app as fastapi_app
from veil_stage.schemas.interaction import Interaction
from veil_stage.services.ratelimit import RateLimiter
from veil_stage.services.scheduler import MemoryTimerStore
from veil_stage.services.session_store import MemorySessionStore
from veil_stage.services.store_factory import Stores

# One interval minute lasts this many milliseconds in tests
TEST_MS_PER_MINUTE = 20

_INTERACTION_IDS = count(1000)


class FakeDelivery:
    """Delivery client that records every call instead of reaching the platform."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.edited: list[tuple[str, str, dict[str, Any]]] = []
        self.originals: list[tuple[str, dict[str, Any]]] = []
        self.followups: list[tuple[str, dict[str, Any]]] = []
        self.send_error: Exception | None = None
        self.edit_error: Exception | None = None
        self.closed = False
        self._message_ids = count(1)

    async def send_message(self, channel_id: str, body: Mapping[str, Any]) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((channel_id, dict(body)))
        return f"msg-{next(self._message_ids)}"

    async def edit_message(self, channel_id: str, message_id: str, body: Mapping[str, Any]) -> None:
        if self.edit_error is not None:
            raise self.edit_error
        self.edited.append((channel_id, message_id, dict(body)))

    async def edit_original(self, token: str, body: Mapping[str, Any]) -> None:
        self.originals.append((token, dict(body)))

    async def create_followup(self, token: str, body: Mapping[str, Any]) -> None:
        self.followups.append((token, dict(body)))

    async def close(self) -> None:
        self.closed = True


class RecordingContext(InteractionContext):
    """In-process context that records acknowledgments and replies."""

    def __init__(self, interaction: Interaction, delivery: FakeDelivery) -> None:
        super().__init__(interaction, delivery)
        self.acks: list[dict[str, Any]] = []
        self.replies: list[dict[str, Any]] = []
        self.followups: list[dict[str, Any]] = []

    async def acknowledge(self, ack: Mapping[str, Any]) -> None:
        self.ack = dict(ack)
        self.acks.append(dict(ack))

    async def edit_reply(self, body: Mapping[str, Any]) -> None:
        self.replies.append(dict(body))

    async def follow_up(self, body: Mapping[str, Any]) -> None:
        self.followups.append(dict(body))


def make_command(
    name: str,
    options: list[dict[str, Any]] | None = None,
    *,
    user_id: str = "user-1",
    channel_id: str = "chan-1",
    guild_id: str | None = "guild-1",
) -> dict[str, Any]:
    """Build a raw slash-command interaction payload."""
    return {
        "id": str(next(_INTERACTION_IDS)),
        "type": 2,
        "token": "tok-" + name,
        "application_id": "app-1",
        "guild_id": guild_id,
        "channel_id": channel_id,
        "member": {"user": {"id": user_id, "username": f"name-{user_id}"}},
        "data": {"name": name, "options": options or []},
    }


def make_component(
    custom_id: str,
    *,
    user_id: str = "user-1",
    channel_id: str = "chan-1",
    guild_id: str | None = "guild-1",
) -> dict[str, Any]:
    """Build a raw button-press interaction payload."""
    return {
        "id": str(next(_INTERACTION_IDS)),
        "type": 3,
        "token": "tok-button",
        "application_id": "app-1",
        "guild_id": guild_id,
        "channel_id": channel_id,
        "member": {"user": {"id": user_id, "username": f"name-{user_id}"}},
        "data": {"custom_id": custom_id, "component_type": 2},
    }


def option(name: str, value: Any) -> dict[str, Any]:
    return {"name": name, "type": 3, "value": value}


def subcommand(name: str, *options: dict[str, Any]) -> dict[str, Any]:
    return {"name": name, "type": 1, "options": list(options)}


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll a condition set by work running on the test client's event loop."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture()
def delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture()
def session_store() -> MemorySessionStore:
    return MemorySessionStore(60_000, sweep_interval=0.05)


@pytest.fixture()
def timer_store() -> MemoryTimerStore:
    return MemoryTimerStore(10 * 60 * TEST_MS_PER_MINUTE, ms_per_minute=TEST_MS_PER_MINUTE)


@pytest.fixture()
def services(session_store: MemorySessionStore, timer_store: MemoryTimerStore) -> HandlerServices:
    return HandlerServices(
        sessions=session_store,
        timers=timer_store,
        limiter=RateLimiter(5, 10.0),
    )


@pytest.fixture()
def context_for(delivery: FakeDelivery) -> Callable[[dict[str, Any]], RecordingContext]:
    def _build(raw: dict[str, Any]) -> RecordingContext:
        return RecordingContext(Interaction.model_validate(raw), delivery)

    return _build


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture()
def test_settings(signing_key: SigningKey) -> Settings:
    """Provide settings carrying the public half of the test signing key."""
    return Settings(
        public_key=signing_key.verify_key.encode().hex(),
        application_id="app-1",
        bot_token="bot-token",
        log_json=False,
    )


@pytest.fixture()
def sign(signing_key: SigningKey) -> Callable[[bytes], dict[str, str]]:
    """Return signature headers for a raw body."""

    def _sign(body: bytes, timestamp: str = "1700000000") -> dict[str, str]:
        signature = signing_key.sign(timestamp.encode() + body).signature.hex()
        return {
            "X-Signature-Ed25519": signature,
            "X-Signature-Timestamp": timestamp,
            "Content-Type": "application/json",
        }

    return _sign


@pytest.fixture()
def app(
    test_settings: Settings,
    delivery: FakeDelivery,
    session_store: MemorySessionStore,
    timer_store: MemoryTimerStore,
) -> Iterator[FastAPI]:
    fastapi_app.state.stores = Stores(
        backend="memory",
        sessions=session_store,
        timers=timer_store,
    )
    fastapi_app.state.delivery = delivery
    fastapi_app.dependency_overrides[get_settings] = lambda: test_settings
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.pop(get_settings, None)
        for name in ("stores", "delivery"):
            if hasattr(fastapi_app.state, name):
                delattr(fastapi_app.state, name)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def post_signed(client: TestClient, sign: Callable[..., dict[str, str]]) -> Callable[..., Any]:
    """POST a payload to the interactions endpoint with a valid signature."""

    def _post(payload: dict[str, Any]) -> Any:
        body = json.dumps(payload).encode()
        return client.post("/interactions", content=body, headers=sign(body))

    return _post
