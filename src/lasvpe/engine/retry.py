# src/lasvpe/engine/retry.py
"""RobustExecutor: bounded retry around one unit of work.

Provides:
- Exponential backoff with jitter (zero delays allowed, for tests)
- Configurable max attempts (total tries, first one included)
- Non-retryable errors (FatalStageError) fail after one attempt
- The last failure itself is surfaced once attempts run out

All attempts run synchronously on the calling thread.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from lasvpe.contracts.errors import FatalStageError

if TYPE_CHECKING:
    from lasvpe.core.config import RetrySettings

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Every Exception is retryable except FatalStageError."""
    return isinstance(error, Exception) and not isinstance(error, FatalStageError)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0  # backoff multiplier

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays must be >= 0")

    @classmethod
    def no_wait(cls, max_attempts: int = 3) -> "RetryConfig":
        """Retry immediately, without sleeping between attempts."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


class RobustExecutor:
    """Runs work items, retrying failures up to ``max_attempts`` times.

    Example:
        executor = RobustExecutor(RetryConfig(max_attempts=3))

        result = executor.execute(
            stage.process,
            node.exec_param,
            payload,
            on_retry=lambda attempt, error: log.warning("retrying", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        self._config = config or RetryConfig()

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RobustExecutor":
        return cls(RetryConfig.from_settings(settings))

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute(
        self,
        work: Callable[..., T],
        *args: Any,
        on_retry: Callable[[int, BaseException], None] | None = None,
        **kwargs: Any,
    ) -> T:
        """Call ``work(*args, **kwargs)`` until it succeeds or attempts run out.

        Args:
            work: Unit of work; may be invoked up to max_attempts times
            on_retry: Optional callback (attempt, error) before each retry

        Returns:
            Result of the first successful invocation

        Raises:
            Exception: The last failure, once max_attempts invocations failed,
                or the first non-retryable failure
        """
        for attempt_state in Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential_jitter(
                initial=self._config.base_delay,
                max=self._config.max_delay,
                exp_base=self._config.exponential_base,
                jitter=self._config.jitter,
            ),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        ):
            with attempt_state:
                attempt = attempt_state.retry_state.attempt_number
                try:
                    return work(*args, **kwargs)
                except Exception as e:
                    # Only report attempts that will actually be retried
                    if on_retry is not None and is_retryable(e) and attempt < self._config.max_attempts:
                        on_retry(attempt, e)
                    raise

        # Retrying with reraise=True always returns or raises
        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
