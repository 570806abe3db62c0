import logging
import random
from typing import Awaitable, Callable, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from chatcore.common.errors import (
    FatalUpstreamError,
    RetriesExhausted,
    TransientUpstreamError,
)
from chatcore.engine.cancellation import CancelToken, cancellable_sleep, run_cancellable

logger = logging.getLogger("ChatCore")

T = TypeVar("T")


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=1000, ge=0)
    jitter_ms: int = Field(default=1000, ge=0)

    @classmethod
    def from_settings(cls, settings: dict) -> "RetryPolicy":
        return cls(**{k: v for k, v in settings.items() if k in cls.model_fields})

    def delay_for(self, attempt_number: int, jitter: float = 0.0) -> float:
        """Backoff in seconds before retrying after failed attempt ``attempt_number``."""
        delay_ms = self.base_delay_ms * (2 ** (attempt_number - 1)) + jitter
        return delay_ms / 1000.0


class RetryAttempt(BaseModel):
    attempt_number: int
    last_error: str
    classification: str


class RetryExecutor:
    """Runs one provider call with bounded retry-with-backoff.

    Fatal errors fail immediately. Transient errors are retried until
    ``max_attempts`` is reached, sleeping ``base * 2^(n-1) + jitter`` ms
    before each retry, after which RetriesExhausted wraps the last error.
    Holds no per-call state, so one instance serves concurrent requests.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float, Optional[CancelToken]], Awaitable[None]] = cancellable_sleep,
        jitter: Optional[Callable[[float, float], float]] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._jitter = jitter or random.uniform

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        cancel_token: Optional[CancelToken] = None,
    ) -> T:
        """Calls ``operation`` until it succeeds, fails fatally or runs out of attempts.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            label: Name used in log lines (usually the candidate).
            cancel_token: Aborts the backoff sleep and the in-flight call.

        Returns:
            Whatever ``operation`` returns on the first successful attempt.

        Raises:
            FatalUpstreamError: On the first non-retryable failure.
            RetriesExhausted: When every attempt failed transiently.
            GenerationCancelled: When ``cancel_token`` fires.
        """
        history: List[RetryAttempt] = []
        attempt_number = 1
        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                return await run_cancellable(operation(), cancel_token)
            except FatalUpstreamError as e:
                history.append(RetryAttempt(
                    attempt_number=attempt_number,
                    last_error=e.message,
                    classification=e.classification,
                ))
                logger.warning(
                    f"[{label}] Attempt {attempt_number} failed with fatal error, not retrying: {e.message}"
                )
                raise
            except TransientUpstreamError as e:
                history.append(RetryAttempt(
                    attempt_number=attempt_number,
                    last_error=e.message,
                    classification=e.classification,
                ))
                if attempt_number >= self.policy.max_attempts:
                    logger.error(
                        f"[{label}] Attempt {attempt_number}/{self.policy.max_attempts} failed, "
                        f"retries exhausted: {e.message}"
                    )
                    raise RetriesExhausted(attempt_number, e, history) from e

                delay = self.policy.delay_for(
                    attempt_number, self._jitter(0, self.policy.jitter_ms)
                )
                logger.warning(
                    f"[{label}] Attempt {attempt_number}/{self.policy.max_attempts} failed "
                    f"({e.message}). Retrying in {delay:.2f}s."
                )
                await self._sleep(delay, cancel_token)
                attempt_number += 1
