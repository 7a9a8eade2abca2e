"""Hidden-result session entries."""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def new_session_id() -> str:
    """Return a fresh, globally unique session identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class SessionEntry:
    """A committed result awaiting disclosure.

    The payload belongs to the caller. Stores never inspect it, and they hand
    out copies, so mutating a returned payload leaves the stored one intact.
    """

    id: str
    owner_id: str
    scope_id: str
    payload: Mapping[str, Any]
    external_ref: str
    owner_tag: str = ""
    note: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def age_ms(self, now: datetime | None = None) -> float:
        """Return the entry age in milliseconds."""
        current = now or utcnow()
        return (current - self.created_at).total_seconds() * 1000

    def is_expired(self, ttl_ms: int, now: datetime | None = None) -> bool:
        return self.age_ms(now) > ttl_ms

    def to_json(self) -> str:
        """Serialize the entry for the shared backend."""
        return json.dumps(
            {
                "id": self.id,
                "owner_id": self.owner_id,
                "scope_id": self.scope_id,
                "payload": self.payload,
                "external_ref": self.external_ref,
                "owner_tag": self.owner_tag,
                "note": self.note,
                "created_at": self.created_at.isoformat(),
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> SessionEntry:
        data = json.loads(raw)
        created_at = datetime.fromisoformat(data["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            scope_id=data["scope_id"],
            payload=data["payload"],
            external_ref=data["external_ref"],
            owner_tag=data.get("owner_tag", ""),
            note=data.get("note"),
            created_at=created_at,
        )
