"""Recurring timer models."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

MS_PER_MINUTE = 60 * 1000


class FinishReason(str, Enum):
    """Why a timer ended on its own."""

    OCCURRENCES_EXHAUSTED = "occurrences-exhausted"
    LIFETIME_EXCEEDED = "lifetime-exceeded"


@dataclass(frozen=True)
class TimerConfig:
    """Parameters for creating a timer."""

    guild_id: str
    scope_id: str
    name: str
    interval_minutes: int
    max_occurrences: int | None
    owner_id: str


@dataclass
class ScheduledTimer:
    """A live recurring notifier.

    Only the owning store mutates instances; callbacks receive snapshots.
    """

    id: int
    guild_id: str
    scope_id: str
    name: str
    owner_id: str
    interval_minutes: int
    interval_ms: int
    max_occurrences: int | None
    occurrence_count: int
    started_at: int
    max_lifetime_ms: int

    @classmethod
    def from_config(
        cls,
        timer_id: int,
        config: TimerConfig,
        *,
        started_at: int,
        max_lifetime_ms: int,
        ms_per_minute: int = MS_PER_MINUTE,
    ) -> ScheduledTimer:
        return cls(
            id=timer_id,
            guild_id=config.guild_id,
            scope_id=config.scope_id,
            name=config.name,
            owner_id=config.owner_id,
            interval_minutes=config.interval_minutes,
            interval_ms=config.interval_minutes * ms_per_minute,
            max_occurrences=config.max_occurrences,
            occurrence_count=0,
            started_at=started_at,
            max_lifetime_ms=max_lifetime_ms,
        )

    def occurrences_exhausted(self) -> bool:
        return self.max_occurrences is not None and self.occurrence_count >= self.max_occurrences

    def elapsed_ms(self) -> int:
        """Scheduled time of the latest tick, relative to the start."""
        return self.occurrence_count * self.interval_ms

    def next_tick_exceeds_lifetime(self, elapsed_ms: float) -> bool:
        """Return True when one more interval would run past the lifetime cap."""
        return elapsed_ms + self.interval_ms > self.max_lifetime_ms

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> ScheduledTimer:
        data: dict[str, Any] = json.loads(raw)
        return cls(
            id=int(data["id"]),
            guild_id=str(data["guild_id"]),
            scope_id=str(data["scope_id"]),
            name=str(data["name"]),
            owner_id=str(data["owner_id"]),
            interval_minutes=int(data["interval_minutes"]),
            interval_ms=int(data["interval_ms"]),
            max_occurrences=(
                int(data["max_occurrences"]) if data.get("max_occurrences") is not None else None
            ),
            occurrence_count=int(data.get("occurrence_count", 0)),
            started_at=int(data["started_at"]),
            max_lifetime_ms=int(data["max_lifetime_ms"]),
        )
