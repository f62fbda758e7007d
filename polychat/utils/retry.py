import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from ..exceptions import AIProviderError
from .logger import LoggerFactory, LoggerInterface

T = TypeVar('T')

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_INTERVAL = 0.1  # seconds
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_INTERVAL_RANDOMNESS = 0.5
DEFAULT_MAX_INTERVAL = 30.0  # seconds


class AttemptState(Enum):
    """Lifecycle of a single attempt."""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff configuration.

    max_retries counts retries after the first attempt, so an operation runs at
    most max_retries + 1 times.
    """
    max_retries: int = DEFAULT_MAX_RETRIES
    interval: float = DEFAULT_RETRY_INTERVAL
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    interval_randomness: float = DEFAULT_INTERVAL_RANDOMNESS
    max_interval: float = DEFAULT_MAX_INTERVAL

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        """Build a policy from a UnifiedConfig-like object."""
        return cls(
            max_retries=config.max_retries,
            interval=config.retry_interval,
            backoff_factor=config.retry_backoff_factor,
            interval_randomness=config.retry_interval_randomness,
            max_interval=config.max_retry_interval,
        )

    def delay(self, attempt: int) -> float:
        """
        Seconds to wait before retry number `attempt` (0-based).

        interval * backoff_factor ** attempt, capped at max_interval, then
        scaled by a random factor in [1 - randomness, 1 + randomness].
        """
        base = min(self.max_interval, self.interval * (self.backoff_factor ** attempt))
        jitter = random.uniform(-self.interval_randomness, self.interval_randomness)
        return max(0.0, base * (1 + jitter))


RetryCallback = Callable[[int, AIProviderError, float], Any]


class RetryExecutor:
    """
    Runs an async operation with classification-aware retries.

    Only AIProviderError instances whose `retryable` flag is set are retried;
    anything else, and the last retryable error once the budget is spent, is
    re-raised untouched.
    """

    def __init__(self,
                 policy: Optional[RetryPolicy] = None,
                 logger: Optional[LoggerInterface] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.policy = policy or RetryPolicy()
        self._logger = logger or LoggerFactory.create(name="retry")
        self._sleep = sleep

    async def run(self,
                  operation: Callable[[], Coroutine[Any, Any, T]],
                  name: str = "request",
                  can_retry: Optional[Callable[[], bool]] = None,
                  on_retry: Optional[RetryCallback] = None) -> T:
        """
        Execute `operation` until it succeeds or fails fatally.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            name: Label used in log messages
            can_retry: Extra guard consulted after a retryable failure (used to
                forbid retries once streamed output reached the caller)
            on_retry: Called with (attempt, error, delay) before each sleep

        Returns:
            The operation's result
        """
        attempt = 0
        while True:
            state = AttemptState.IN_FLIGHT
            self._logger.debug(f"{name}: attempt {attempt + 1} {state.value}")
            try:
                result = await operation()
            except AIProviderError as e:
                state = self._classify_failure(e, attempt, can_retry)
                if state is AttemptState.FATAL_FAILURE:
                    if e.retryable:
                        self._logger.error(f"{name}: giving up after {attempt + 1} attempt(s). Last error: {e!r}")
                    raise

                wait_time = self.policy.delay(attempt)
                self._logger.warning(
                    f"Retry {attempt + 1}/{self.policy.max_retries} for {name} after error: {e!r}. "
                    f"Waiting {wait_time:.2f}s..."
                )
                if on_retry is not None:
                    on_retry(attempt, e, wait_time)
                await self._sleep(wait_time)
                attempt += 1
                continue

            state = AttemptState.SUCCESS
            self._logger.debug(f"{name}: attempt {attempt + 1} {state.value}")
            return result

    def _classify_failure(self,
                          error: AIProviderError,
                          attempt: int,
                          can_retry: Optional[Callable[[], bool]]) -> AttemptState:
        if not error.retryable:
            return AttemptState.FATAL_FAILURE
        if attempt >= self.policy.max_retries:
            return AttemptState.FATAL_FAILURE
        if can_retry is not None and not can_retry():
            self._logger.warning("Retryable failure after output was delivered; not retrying.")
            return AttemptState.FATAL_FAILURE
        return AttemptState.RETRYABLE_FAILURE
