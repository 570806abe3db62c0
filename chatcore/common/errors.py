from typing import Optional


RATE_LIMIT_USER_MESSAGE = (
    "AI service temporarily unavailable due to high demand. "
    "Please try again in a few minutes."
)


class ChatCoreError(Exception):
    """Base class for every error raised by the generation core."""


class ValidationError(ChatCoreError):
    """Unknown provider/model pair or a request the catalog cannot serve.

    Indicates a caller bug: never retried, never triggers fallback.
    """


class CapabilityError(ChatCoreError):
    """The provider adapter does not implement the requested operation."""


class InsufficientCreditsError(ChatCoreError):
    def __init__(self, model: str, cost: int, balance: int):
        self.model = model
        self.cost = cost
        self.balance = balance
        super().__init__(
            f"Insufficient credits for '{model}': costs {cost}, balance {balance}"
        )


class UpstreamError(ChatCoreError):
    """Normalized failure reported by a provider adapter."""

    classification = "upstream"

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
        rate_limited: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.rate_limited = rate_limited

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}/{self.model}] {self.message}"
        return self.message


class TransientUpstreamError(UpstreamError):
    """Rate limit, quota, timeout or 5xx. Retried in place, then falls back."""

    classification = "transient"


class FatalUpstreamError(UpstreamError):
    """Bad request, auth failure or invalid model. Skips retry, falls back."""

    classification = "fatal"


class DeadlineExceeded(UpstreamError):
    classification = "deadline"


class RetriesExhausted(ChatCoreError):
    """Raised by the retry executor once every attempt failed transiently."""

    def __init__(self, attempts: int, last_error: UpstreamError, history=None):
        self.attempts = attempts
        self.last_error = last_error
        self.history = list(history or [])
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error.message}"
        )

    @property
    def rate_limited(self) -> bool:
        return self.last_error.rate_limited


class GenerationCancelled(ChatCoreError):
    """The caller cancelled the generation (sleep or in-flight call aborted)."""


class AllCandidatesExhausted(ChatCoreError):
    """Every candidate of the fallback plan failed.

    ``rate_limited`` tells the caller whether the final cause was rate
    limiting, so it can show a "high demand" message instead of the raw
    upstream text.
    """

    def __init__(self, last_error: Optional[Exception], rate_limited: bool = False):
        self.last_error = last_error
        self.rate_limited = rate_limited
        detail = str(last_error) if last_error else "no candidate available"
        super().__init__(f"All providers failed. Last error: {detail}")

    @property
    def user_message(self) -> str:
        if self.rate_limited:
            return RATE_LIMIT_USER_MESSAGE
        if isinstance(self.last_error, RetriesExhausted):
            return self.last_error.last_error.message
        if isinstance(self.last_error, UpstreamError):
            return self.last_error.message
        if self.last_error is not None:
            return str(self.last_error)
        return "Failed to generate response"


def is_rate_limit_error(error: Optional[Exception]) -> bool:
    if isinstance(error, (UpstreamError, RetriesExhausted)):
        return error.rate_limited
    return False
