"""
Error taxonomy, result type and retry/circuit-breaker utilities for the QuizGen service
"""
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Any, Optional, TypeVar, Dict, Generic, Tuple, Type

T = TypeVar('T')

logger = logging.getLogger("quizgen.errors")


class QuizGenError(Exception):
    """Base exception for question generation errors"""
    kind = "error"


class MissingSectionError(QuizGenError):
    """A required QUESTION/CORRECT/WRONG section is absent from a completion"""
    kind = "missing_section"

    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Could not find {section} section in text")


class InsufficientWrongAnswersError(QuizGenError):
    """Fewer than three usable wrong answers survived cleanup"""
    kind = "insufficient_wrong_answers"

    def __init__(self, found: int, candidates: Optional[list] = None):
        self.found = found
        self.candidates = list(candidates or [])
        message = f"Expected at least 3 wrong answers, found {found}"
        if self.candidates:
            message += f": {', '.join(self.candidates)}"
        super().__init__(message)


class ModelCallError(QuizGenError):
    """Raised when a model provider fails to return a completion"""
    kind = "model_call_failure"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class ModelTimeoutError(ModelCallError):
    """Raised when a model request exceeds its bounded wait"""
    kind = "model_timeout"


class ModelConnectionError(ModelCallError):
    """Raised when the model backend cannot be reached"""
    kind = "model_connection"


class ModelNotConfiguredError(ModelCallError):
    """Raised when a provider lacks credentials or a model file"""
    kind = "model_not_configured"


class ServiceUnavailableError(ModelCallError):
    """Raised when the circuit breaker is open"""
    kind = "service_unavailable"


class InvalidRequestError(QuizGenError):
    """The batch request itself is structurally invalid"""
    kind = "invalid_request"


class SourceExtractionError(QuizGenError):
    """Source text could not be obtained from an upload or video"""
    kind = "source_extraction"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success-or-failure outcome of a parse or a model call."""
    value: Optional[T] = None
    error: Optional[QuizGenError] = None
    raw_output: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[str]:
        return None if self.error is None else self.error.kind

    @classmethod
    def success(cls, value: T, raw_output: Optional[str] = None) -> "Result[T]":
        return cls(value=value, raw_output=raw_output)

    @classmethod
    def failure(cls, error: QuizGenError, raw_output: Optional[str] = None) -> "Result[T]":
        return cls(error=error, raw_output=raw_output)


class RetryConfig:
    """Configuration for retry behavior"""
    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retry_on: Tuple[Type[BaseException], ...] = (ModelConnectionError,)
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retry_on = retry_on


def retry_with_backoff(
    func: Callable[..., T],
    config: Optional[RetryConfig] = None,
    *args,
    **kwargs
) -> T:
    """
    Retry a function with exponential backoff.

    Only exceptions listed in ``config.retry_on`` are retried; anything
    else propagates on the first failure.

    Args:
        func: Callable to retry
        config: RetryConfig instance (uses default if None)
        *args, **kwargs: Arguments to pass to func

    Returns:
        Result from successful function call

    Raises:
        Last exception if all retries fail
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info("Retry succeeded on attempt %d", attempt + 1)
            return result

        except config.retry_on as e:
            if attempt >= config.max_retries:
                logger.error("All %d retries failed", config.max_retries)
                raise

            delay = min(
                config.initial_delay * (config.exponential_base ** attempt),
                config.max_delay
            )
            if config.jitter:
                delay = delay * (0.5 + random.random())

            logger.warning("Attempt %d failed: %s. Retrying in %.2f seconds", attempt + 1, e, delay)
            time.sleep(delay)


class CircuitBreaker:
    """
    Circuit breaker pattern to prevent cascading failures.

    States:
    - CLOSED: Normal operation, requests go through
    - OPEN: Too many failures, block requests immediately
    - HALF_OPEN: Testing if service recovered
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.time
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Execute function with circuit breaker protection"""
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _before_call(self):
        with self._lock:
            if self.state != "OPEN":
                return
            elapsed = self._clock() - self.last_failure_time
            if elapsed >= self.timeout:
                logger.info("Circuit breaker moving to HALF_OPEN state")
                self.state = "HALF_OPEN"
                self.success_count = 0
                return
            remaining = self.timeout - elapsed
        raise ServiceUnavailableError(
            f"Circuit breaker is OPEN. Service unavailable for {remaining:.0f} more seconds"
        )

    def _on_success(self):
        with self._lock:
            self.failure_count = 0
            if self.state == "HALF_OPEN":
                self.success_count += 1
                if self.success_count >= self.success_threshold:
                    logger.info("Circuit breaker CLOSED - service recovered")
                    self.state = "CLOSED"
                    self.success_count = 0

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self.state == "HALF_OPEN":
                logger.warning("Circuit breaker OPEN - service still failing")
                self.state = "OPEN"
                self.failure_count = 0
                self.success_count = 0
            elif self.failure_count >= self.failure_threshold:
                logger.warning("Circuit breaker OPEN - %d failures detected", self.failure_count)
                self.state = "OPEN"

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state"""
        with self._lock:
            return {
                "state": self.state,
                "failure_count": self.failure_count,
                "success_count": self.success_count,
                "last_failure_time": self.last_failure_time
            }
