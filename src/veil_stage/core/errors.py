"""Error taxonomy shared by the stores, the delivery client and the dispatcher."""

from __future__ import annotations


class VeilError(RuntimeError):
    """Base exception for all service-level failures."""


class ValidationError(VeilError):
    """Raised when user input is rejected.

    The message is shown to the actor verbatim, so it must be actionable.
    """


class TimerValidationError(ValidationError):
    """Raised when a timer configuration fails validation."""


class AuthorizationError(VeilError):
    """Raised when an actor may not act on a target.

    Carries no detail about whether the target exists.
    """

    def __init__(self, message: str = "You are not permitted to do that.") -> None:
        super().__init__(message)


class NotFoundOrExpiredError(VeilError):
    """Raised when a lookup finds nothing; expired and never-existed look the same."""


class BackendUnavailableError(VeilError):
    """Raised when the shared store cannot be reached or answers with an error.

    Must never be reported to users as "not found".
    """


class StaleRequestError(VeilError):
    """Raised when the platform has already given up on an interaction."""


class RateLimitedError(ValidationError):
    """Raised when an actor exceeds the admission window."""

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"You're acting too fast! Please wait **{retry_after}** second(s) "
            "before trying again."
        )
