"""Domain models for hidden-result sessions and recurring timers."""

from .session import SessionEntry, new_session_id
from .timer import FinishReason, ScheduledTimer, TimerConfig

__all__ = [
    "SessionEntry",
    "new_session_id",
    "FinishReason",
    "ScheduledTimer",
    "TimerConfig",
]
