"""Narrow interfaces to the payload producer and the message formatter.

Committed payloads are opaque to the stores and the dispatcher; only the
formatter reads them. Richer game rules plug in through :class:`ResultFactory`.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from veil_stage.core.errors import ValidationError
from veil_stage.models.session import SessionEntry
from veil_stage.models.timer import FinishReason, ScheduledTimer

MAX_SIDES = 1000
_SIDES_PATTERN = re.compile(r"^\s*d?\s*(\d+)\s*$", re.IGNORECASE)

Body = dict[str, Any]

RESTART_NAME_LIMIT = 40


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a commit: the opaque payload and a public, result-free label."""

    payload: Mapping[str, Any]
    label: str


@runtime_checkable
class ResultFactory(Protocol):
    def produce(self, expression: str) -> CommitResult:
        """Compute a result from user input.

        Raises:
            ValidationError: if the expression cannot be used.
        """
        ...


@runtime_checkable
class Formatter(Protocol):
    def error(self, message: str) -> Body: ...

    def notice(self, message: str) -> Body: ...

    def private_result(self, result: CommitResult, note: str | None, revealed: bool) -> Body: ...

    def public_result(self, result: CommitResult, note: str | None, owner_id: str) -> Body: ...

    def placeholder(self, label: str, note: str | None, owner_id: str, session_id: str) -> Body: ...

    def revealed(self, entry: SessionEntry, revealer_id: str) -> Body: ...

    def timer_started(self, timer: ScheduledTimer) -> Body: ...

    def timer_tick(self, timer: ScheduledTimer) -> Body: ...

    def timer_finished(self, timer: ScheduledTimer, reason: FinishReason) -> Body: ...

    def timer_stopped(self, label: str) -> Body: ...

    def timer_list(self, timers: list[ScheduledTimer]) -> Body: ...

    def help(self) -> Body: ...


class RandomRangeFactory:
    """Draw a uniform integer in ``1..N`` from input such as ``"d20"`` or ``"20"``."""

    def produce(self, expression: str) -> CommitResult:
        match = _SIDES_PATTERN.match(expression or "")
        if not match:
            raise ValidationError(
                'Could not read that expression. Use a number of sides such as "d20".'
            )
        sides = int(match.group(1))
        if not 2 <= sides <= MAX_SIDES:
            raise ValidationError(f"Number of sides must be between 2 and {MAX_SIDES}.")
        value = secrets.randbelow(sides) + 1
        label = f"d{sides}"
        return CommitResult(payload={"expression": label, "total": value}, label=label)


def _button(custom_id: str, label: str, style: int = 1) -> dict[str, Any]:
    return {"type": 2, "style": style, "label": label, "custom_id": custom_id}


def _row(*buttons: dict[str, Any]) -> dict[str, Any]:
    return {"type": 1, "components": list(buttons)}


def restart_custom_id(timer: ScheduledTimer) -> str:
    repeat = timer.max_occurrences or 0
    name = timer.name[:RESTART_NAME_LIMIT]
    return f"trestart:{timer.id}:{timer.interval_minutes}:{repeat}:{name}"


class PlainFormatter:
    """Plain-text message bodies with component rows for the controls."""

    def error(self, message: str) -> Body:
        return {"content": f"⚠️ {message}"}

    def notice(self, message: str) -> Body:
        return {"content": message}

    @staticmethod
    def _describe(payload: Mapping[str, Any]) -> str:
        if "total" in payload:
            return f"**{payload['total']}** ({payload.get('expression', '?')})"
        return str(dict(payload))

    @staticmethod
    def _with_note(text: str, note: str | None) -> str:
        return f"{text}\n> {note}" if note else text

    def private_result(self, result: CommitResult, note: str | None, revealed: bool) -> Body:
        status = "revealed" if revealed else "hidden until you reveal it"
        return {
            "content": self._with_note(
                f"Your result: {self._describe(result.payload)} ({status})", note
            )
        }

    def public_result(self, result: CommitResult, note: str | None, owner_id: str) -> Body:
        return {
            "content": self._with_note(
                f"<@{owner_id}> rolled {self._describe(result.payload)}", note
            )
        }

    def placeholder(self, label: str, note: str | None, owner_id: str, session_id: str) -> Body:
        return {
            "content": self._with_note(f"<@{owner_id}> made a hidden {label} roll.", note),
            "components": [_row(_button(f"reveal:{session_id}", "Reveal Result"))],
        }

    def revealed(self, entry: SessionEntry, revealer_id: str) -> Body:
        return {
            "content": self._with_note(
                f"<@{entry.owner_id}> rolled {self._describe(entry.payload)} "
                f"(revealed by <@{revealer_id}>)",
                entry.note,
            ),
            "components": [],
        }

    def timer_started(self, timer: ScheduledTimer) -> Body:
        repeat = f"{timer.max_occurrences} time(s)" if timer.max_occurrences else "until stopped"
        hours = timer.max_lifetime_ms / 3_600_000
        return {
            "content": (
                f"⏱️ Timer #{timer.id} **{timer.name}** started: every "
                f"{timer.interval_minutes} min, {repeat} (max {hours:g}h)."
            )
        }

    def timer_tick(self, timer: ScheduledTimer) -> Body:
        progress = (
            f"{timer.occurrence_count}/{timer.max_occurrences}"
            if timer.max_occurrences
            else str(timer.occurrence_count)
        )
        return {
            "content": f"🔔 **{timer.name}** (#{timer.id}): trigger {progress}",
            "components": [_row(_button(f"tstop:{timer.id}", "Stop", style=2))],
        }

    def timer_finished(self, timer: ScheduledTimer, reason: FinishReason) -> Body:
        why = (
            "all repeats done"
            if reason is FinishReason.OCCURRENCES_EXHAUSTED
            else "maximum duration reached"
        )
        return {
            "content": (
                f"✅ Timer **{timer.name}** (#{timer.id}) finished after "
                f"{timer.occurrence_count} trigger(s): {why}."
            ),
            "components": [_row(_button(restart_custom_id(timer), "Restart"))],
        }

    def timer_stopped(self, label: str) -> Body:
        return {"content": f"⏹️ Stopped {label}."}

    def timer_list(self, timers: list[ScheduledTimer]) -> Body:
        if not timers:
            return {"content": "No active timers in this channel."}
        lines = [
            f"#{t.id} **{t.name}**: every {t.interval_minutes} min, "
            f"{t.occurrence_count} trigger(s) so far"
            for t in timers
        ]
        return {"content": "\n".join(lines)}

    def help(self) -> Body:
        return {
            "content": (
                "`/roll dice:d20` roll publicly, `/secret dice:d20` roll hidden and "
                "reveal later with the button.\n"
                "`/timer start interval:<min> name:<text> [repeat:<n>]`, "
                "`/timer stop [timer_id] [all]`, `/timer list`."
            )
        }
