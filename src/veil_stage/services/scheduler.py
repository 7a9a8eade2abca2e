"""Recurring timer storage with local drivers and optional shared metadata.

Each timer is driven by an asyncio task owned by the process that created it.
Drivers are never resumed after a restart. Ticks are scheduled against the
start time, so a slow callback never shifts later ticks, and a timer never
fires past its lifetime cap.

:class:`RedisTimerStore` additionally mirrors metadata into Redis so that other
instances can list, count and cancel timers. Cancellation across instances is
advisory: ``stop`` writes a short-lived stop marker, and the owning process's
driver honours it on its next tick. One extra tick may fire before the marker
is observed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from veil_stage.core.errors import BackendUnavailableError, TimerValidationError
from veil_stage.models.timer import MS_PER_MINUTE, FinishReason, ScheduledTimer, TimerConfig

logger = logging.getLogger(__name__)

MAX_TIMERS_PER_SCOPE = 5
MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 480
MIN_OCCURRENCES = 1
MAX_OCCURRENCES = 100
MAX_NAME_LENGTH = 50
NAME_PATTERN = re.compile(r"^[\w\s\-]+$")
DEFAULT_MAX_LIFETIME_MS = 2 * 60 * 60 * 1000
STOP_MARKER_TTL_MS = 60_000

TickCallback = Callable[[ScheduledTimer], Awaitable[None] | None]
FinishCallback = Callable[[ScheduledTimer, FinishReason], Awaitable[None] | None]


@runtime_checkable
class TimerStore(Protocol):
    """Contract shared by the memory and Redis timer stores."""

    max_lifetime_ms: int

    async def validate(self, config: TimerConfig) -> None: ...

    async def create(
        self,
        config: TimerConfig,
        on_tick: TickCallback,
        on_finish: FinishCallback,
    ) -> ScheduledTimer: ...

    async def stop(self, timer_id: int) -> ScheduledTimer | None: ...

    async def stop_all_in_scope(self, scope_id: str) -> int: ...

    async def stop_all(self) -> None: ...

    async def get(self, timer_id: int) -> ScheduledTimer | None: ...

    async def list_by_scope(self, scope_id: str) -> list[ScheduledTimer]: ...

    async def count_by_scope(self, scope_id: str) -> int: ...

    @property
    def size(self) -> int: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def check_timer_fields(config: TimerConfig) -> None:
    """Validate everything about a timer config except scope capacity.

    Raises:
        TimerValidationError: with a message suitable for the actor.
    """
    name = config.name or ""
    if not name.strip():
        raise TimerValidationError("Timer name cannot be empty.")
    if len(name) > MAX_NAME_LENGTH:
        raise TimerValidationError(
            f"Timer name is too long (max {MAX_NAME_LENGTH} characters). You used {len(name)}."
        )
    if not NAME_PATTERN.match(name):
        raise TimerValidationError(
            "Timer name contains invalid characters. "
            "Use letters, numbers, spaces, underscores, or hyphens."
        )
    if not MIN_INTERVAL_MINUTES <= config.interval_minutes <= MAX_INTERVAL_MINUTES:
        raise TimerValidationError(
            f"Interval must be between {MIN_INTERVAL_MINUTES} and {MAX_INTERVAL_MINUTES} minutes."
        )
    if config.max_occurrences is not None and not (
        MIN_OCCURRENCES <= config.max_occurrences <= MAX_OCCURRENCES
    ):
        raise TimerValidationError(
            f"Repeat count must be between {MIN_OCCURRENCES} and {MAX_OCCURRENCES}."
        )


class _LocalDriver:
    """Bookkeeping for one locally driven timer."""

    def __init__(self, timer: ScheduledTimer, started_monotonic: float) -> None:
        self.timer = timer
        self.started_monotonic = started_monotonic
        self.task: asyncio.Task[None] | None = None

    def next_deadline(self) -> float:
        """Monotonic time of the next tick, measured from the start."""
        occurrence = self.timer.occurrence_count + 1
        return self.started_monotonic + occurrence * self.timer.interval_ms / 1000


class MemoryTimerStore:
    """Timer store for a single process.

    Args:
        max_lifetime_ms: Hard cap on a timer's lifetime, even when unbounded.
        max_per_scope: Live timer cap per scope.
        ms_per_minute: Length of one interval minute; tests shrink it.
    """

    def __init__(
        self,
        max_lifetime_ms: int = DEFAULT_MAX_LIFETIME_MS,
        *,
        max_per_scope: int = MAX_TIMERS_PER_SCOPE,
        ms_per_minute: int = MS_PER_MINUTE,
    ) -> None:
        self.max_lifetime_ms = max_lifetime_ms
        self.max_per_scope = max_per_scope
        self._ms_per_minute = ms_per_minute
        self._drivers: dict[int, _LocalDriver] = {}
        self._next_id = 1

    # --- identity and shared hooks; overridden by the Redis store ---------------
    async def _allocate_id(self) -> int:
        timer_id = self._next_id
        self._next_id += 1
        return timer_id

    async def _publish(self, timer: ScheduledTimer) -> None:
        """Record a newly created timer outside this process."""

    async def _record_progress(self, timer: ScheduledTimer) -> None:
        """Record a tick outside this process."""

    async def _stop_requested(self, timer_id: int) -> bool:
        return False

    async def _retire(self, timer: ScheduledTimer, *, mark_stopped: bool) -> None:
        """Drop any out-of-process record of a timer."""

    # --- validation -------------------------------------------------------------
    async def validate(self, config: TimerConfig) -> None:
        """Check a config before admission.

        Raises:
            TimerValidationError: if any field is out of bounds or the scope is full.
        """
        check_timer_fields(config)
        if config.interval_minutes * self._ms_per_minute > self.max_lifetime_ms:
            hours = self.max_lifetime_ms / 3_600_000
            raise TimerValidationError(
                f"Interval is longer than the maximum timer lifetime of {hours:g} hour(s). "
                "Choose a shorter interval."
            )
        if await self.count_by_scope(config.scope_id) >= self.max_per_scope:
            raise TimerValidationError(
                f"This channel already has {self.max_per_scope} active timers. "
                "Stop one first with `/timer stop`."
            )

    # --- lifecycle --------------------------------------------------------------
    async def create(
        self,
        config: TimerConfig,
        on_tick: TickCallback,
        on_finish: FinishCallback,
    ) -> ScheduledTimer:
        """Validate, register and start a timer."""
        await self.validate(config)

        timer_id = await self._allocate_id()
        timer = ScheduledTimer.from_config(
            timer_id,
            config,
            started_at=_now_ms(),
            max_lifetime_ms=self.max_lifetime_ms,
            ms_per_minute=self._ms_per_minute,
        )
        await self._publish(timer)

        driver = _LocalDriver(timer, time.monotonic())
        self._drivers[timer_id] = driver
        driver.task = asyncio.create_task(self._drive(driver, on_tick, on_finish))
        return dataclasses.replace(timer)

    async def _drive(
        self,
        driver: _LocalDriver,
        on_tick: TickCallback,
        on_finish: FinishCallback,
    ) -> None:
        timer = driver.timer

        while True:
            await asyncio.sleep(max(0.0, driver.next_deadline() - time.monotonic()))
            if self._drivers.get(timer.id) is not driver:
                return

            timer.occurrence_count += 1

            if await self._safe_stop_requested(timer.id):
                self._drivers.pop(timer.id, None)
                logger.info(
                    "Timer %d halted by stop marker",
                    timer.id,
                    extra={"event": "timer-stop-observed", "timer_id": timer.id,
                           "scope_id": timer.scope_id},
                )
                return

            await self._safe_shared_call("record-progress", timer, self._record_progress(timer))

            reason: FinishReason | None = None
            if timer.occurrences_exhausted():
                reason = FinishReason.OCCURRENCES_EXHAUSTED
            elif timer.next_tick_exceeds_lifetime(timer.elapsed_ms()):
                reason = FinishReason.LIFETIME_EXCEEDED

            if reason is not None:
                self._drivers.pop(timer.id, None)
                await self._safe_shared_call(
                    "retire", timer, self._retire(timer, mark_stopped=False)
                )

            await self._fire("tick", dataclasses.replace(timer), on_tick)

            if reason is not None:
                logger.info(
                    "Timer %d finished: %s",
                    timer.id,
                    reason.value,
                    extra={"event": "timer-finished", "timer_id": timer.id,
                           "scope_id": timer.scope_id, "reason": reason.value,
                           "count": timer.occurrence_count},
                )
                await self._fire("finish", dataclasses.replace(timer), on_finish, reason)
                return

    async def _fire(
        self,
        kind: str,
        timer: ScheduledTimer,
        callback: Callable[..., object],
        *args: object,
    ) -> None:
        try:
            result = callback(timer, *args)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error(
                "Timer %s callback failed for timer %d: %s",
                kind,
                timer.id,
                exc,
                exc_info=True,
                extra={"event": f"timer-{kind}-failed", "timer_id": timer.id,
                       "scope_id": timer.scope_id, "error": str(exc)},
            )

    async def _safe_stop_requested(self, timer_id: int) -> bool:
        try:
            return await self._stop_requested(timer_id)
        except BackendUnavailableError as exc:
            logger.warning(
                "Could not read stop marker for timer %d: %s",
                timer_id,
                exc,
                extra={"event": "timer-stop-marker-unreadable", "timer_id": timer_id,
                       "error": str(exc)},
            )
            return False

    async def _safe_shared_call(
        self, operation: str, timer: ScheduledTimer, call: Awaitable[None]
    ) -> None:
        try:
            await call
        except BackendUnavailableError as exc:
            logger.warning(
                "Shared timer %s failed for timer %d: %s",
                operation,
                timer.id,
                exc,
                extra={"event": "timer-shared-failed", "operation": operation,
                       "timer_id": timer.id, "error": str(exc)},
            )

    def _halt_local(self, timer_id: int) -> ScheduledTimer | None:
        driver = self._drivers.pop(timer_id, None)
        if driver is None:
            return None
        if driver.task is not None and driver.task is not asyncio.current_task():
            driver.task.cancel()
        return dataclasses.replace(driver.timer)

    async def stop(self, timer_id: int) -> ScheduledTimer | None:
        """Stop a timer. Returns None when it is already gone."""
        return self._halt_local(timer_id)

    async def stop_all_in_scope(self, scope_id: str) -> int:
        ids = [tid for tid, d in self._drivers.items() if d.timer.scope_id == scope_id]
        for timer_id in ids:
            self._halt_local(timer_id)
        return len(ids)

    async def stop_all(self) -> None:
        """Stop every local timer (graceful shutdown)."""
        for timer_id in list(self._drivers):
            self._halt_local(timer_id)

    # --- reads ------------------------------------------------------------------
    async def get(self, timer_id: int) -> ScheduledTimer | None:
        driver = self._drivers.get(timer_id)
        return dataclasses.replace(driver.timer) if driver else None

    async def list_by_scope(self, scope_id: str) -> list[ScheduledTimer]:
        return [
            dataclasses.replace(d.timer)
            for d in self._drivers.values()
            if d.timer.scope_id == scope_id
        ]

    async def count_by_scope(self, scope_id: str) -> int:
        return sum(1 for d in self._drivers.values() if d.timer.scope_id == scope_id)

    @property
    def size(self) -> int:
        """Number of timers driven by this process."""
        return len(self._drivers)


class RedisTimerStore(MemoryTimerStore):
    """Timer store that mirrors metadata into Redis for cross-instance visibility.

    Key layout under ``{prefix}:timer``: ``{id}`` holds JSON metadata,
    ``scope:{scope_id}`` is the set of live ids, ``nextid`` is the id counter
    and ``stop:{id}`` is the short-lived stop marker.
    """

    def __init__(
        self,
        redis: Redis,
        max_lifetime_ms: int = DEFAULT_MAX_LIFETIME_MS,
        *,
        key_prefix: str = "veil",
        max_per_scope: int = MAX_TIMERS_PER_SCOPE,
        ms_per_minute: int = MS_PER_MINUTE,
    ) -> None:
        super().__init__(
            max_lifetime_ms,
            max_per_scope=max_per_scope,
            ms_per_minute=ms_per_minute,
        )
        self._redis = redis
        self._prefix = key_prefix

    def timer_key(self, timer_id: int) -> str:
        return f"{self._prefix}:timer:{timer_id}"

    def scope_key(self, scope_id: str) -> str:
        return f"{self._prefix}:timer:scope:{scope_id}"

    def stop_key(self, timer_id: int) -> str:
        return f"{self._prefix}:timer:stop:{timer_id}"

    @property
    def next_id_key(self) -> str:
        return f"{self._prefix}:timer:nextid"

    async def _call(self, operation: str, awaitable: Awaitable[object]) -> object:
        try:
            return await awaitable
        except RedisError as exc:
            raise BackendUnavailableError(f"Timer store {operation} failed: {exc}") from exc

    async def _allocate_id(self) -> int:
        return int(await self._call("id allocation", self._redis.incr(self.next_id_key)))

    async def _publish(self, timer: ScheduledTimer) -> None:
        await self._call("publish", self._redis.set(self.timer_key(timer.id), timer.to_json()))
        await self._call("publish", self._redis.sadd(self.scope_key(timer.scope_id), timer.id))

    async def _record_progress(self, timer: ScheduledTimer) -> None:
        # Only rewrite metadata that still exists; a remote stop may have removed it.
        raw = await self._call("progress read", self._redis.get(self.timer_key(timer.id)))
        if not raw:
            return
        await self._call("progress write", self._redis.set(self.timer_key(timer.id), timer.to_json()))

    async def _stop_requested(self, timer_id: int) -> bool:
        return bool(await self._call("stop check", self._redis.exists(self.stop_key(timer_id))))

    async def _retire(self, timer: ScheduledTimer, *, mark_stopped: bool) -> None:
        if mark_stopped:
            await self._mark_stopped(timer.id)
        await self._call("cleanup", self._redis.delete(self.timer_key(timer.id)))
        await self._call("cleanup", self._redis.srem(self.scope_key(timer.scope_id), timer.id))

    async def _mark_stopped(self, timer_id: int) -> None:
        await self._call(
            "stop marker",
            self._redis.set(self.stop_key(timer_id), "1", px=STOP_MARKER_TTL_MS),
        )

    async def _load(self, timer_id: int) -> ScheduledTimer | None:
        raw = await self._call("read", self._redis.get(self.timer_key(timer_id)))
        if not raw:
            return None
        try:
            return ScheduledTimer.from_json(raw)  # type: ignore[arg-type]
        except (ValueError, KeyError, TypeError) as exc:
            raise BackendUnavailableError(f"Corrupt metadata for timer {timer_id}") from exc

    async def _scope_ids(self, scope_id: str) -> list[int]:
        members = await self._call("scope read", self._redis.smembers(self.scope_key(scope_id)))
        ids: list[int] = []
        for member in members:  # type: ignore[union-attr]
            try:
                ids.append(int(member))
            except (TypeError, ValueError):
                continue
        return sorted(ids)

    async def stop(self, timer_id: int) -> ScheduledTimer | None:
        """Stop a local timer, or flag a remote one for its owner to halt."""
        local = self._halt_local(timer_id)
        if local is not None:
            await self._retire(local, mark_stopped=True)
            return local

        remote = await self._load(timer_id)
        if remote is None:
            return None
        await self._retire(remote, mark_stopped=True)
        return remote

    async def stop_all_in_scope(self, scope_id: str) -> int:
        count = 0
        for timer_id in await self._scope_ids(scope_id):
            self._halt_local(timer_id)
            await self._mark_stopped(timer_id)
            await self._call("cleanup", self._redis.delete(self.timer_key(timer_id)))
            count += 1
        await self._call("cleanup", self._redis.delete(self.scope_key(scope_id)))
        return count

    async def stop_all(self) -> None:
        """Stop timers driven by this process; remote timers are left alone."""
        for timer_id in list(self._drivers):
            timer = self._halt_local(timer_id)
            if timer is None:
                continue
            try:
                await self._retire(timer, mark_stopped=True)
            except BackendUnavailableError as exc:
                logger.warning(
                    "Could not clean up timer %d during shutdown: %s",
                    timer_id,
                    exc,
                    extra={"event": "timer-shutdown-cleanup-failed", "timer_id": timer_id,
                           "error": str(exc)},
                )

    async def get(self, timer_id: int) -> ScheduledTimer | None:
        local = await super().get(timer_id)
        if local is not None:
            return local
        return await self._load(timer_id)

    async def list_by_scope(self, scope_id: str) -> list[ScheduledTimer]:
        timers: list[ScheduledTimer] = []
        for timer_id in await self._scope_ids(scope_id):
            timer = await self.get(timer_id)
            if timer is not None:
                timers.append(timer)
        return timers

    async def count_by_scope(self, scope_id: str) -> int:
        return int(await self._call("count", self._redis.scard(self.scope_key(scope_id))))
