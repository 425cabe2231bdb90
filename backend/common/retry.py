import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
UNKNOWN = "UNKNOWN"

DEFAULT_RETRYABLE_MARKERS: Tuple[str, ...] = (
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "NetworkError",
    "TimeoutError",
    "ConnectionError",
    "Connection refused",
    "Connection reset",
    "timed out",
    "503",
    "502",
    "500",
)


class DatabaseError(Exception):
    """Failure surfaced by the data access layer.

    ``attempts`` is how many times the operation ran before giving up; it is
    1 for errors that are never retried.
    """

    def __init__(
        self,
        message: str,
        code: str = UNKNOWN,
        attempts: int = 1,
        original_error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.attempts = attempts
        self.original_error = original_error
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def __repr__(self) -> str:
        return f"DatabaseError(code={self.code!r}, attempts={self.attempts}, message={self.message!r})"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_markers: Tuple[str, ...] = field(default=DEFAULT_RETRYABLE_MARKERS)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return replace(self, max_attempts=max_attempts)


def error_code_of(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "code", None)
    if code is None:
        code = getattr(exc, "errno", None)
    if code is None:
        return None
    return str(code)


def is_retryable(exc: BaseException, policy: RetryPolicy) -> bool:
    # Errors raised deliberately by an operation (validation, not-found) are final.
    if isinstance(exc, DatabaseError):
        return False
    message = str(exc)
    code = error_code_of(exc)
    names = {cls.__name__ for cls in type(exc).__mro__}
    for marker in policy.retryable_markers:
        if marker in message:
            return True
        if code is not None and code == marker:
            return True
        if marker in names:
            return True
    return False


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with bounded exponential backoff.

    Retryable failures are retried until ``policy.max_attempts`` is reached;
    anything else fails on the spot. The final failure is always a
    ``DatabaseError`` carrying the attempt count.
    """
    policy = policy or RetryPolicy()
    max_attempts = max(1, policy.max_attempts)
    delay = max(0.0, policy.initial_delay)

    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
        except Exception as exc:
            if isinstance(exc, DatabaseError):
                exc.attempts = attempt
                logger.error(
                    "%s failed (attempt %s/%s): [%s] %s",
                    operation_name, attempt, max_attempts, exc.code, exc.message,
                )
                raise

            if not is_retryable(exc, policy) or attempt >= max_attempts:
                logger.error(
                    "%s failed (attempt %s/%s): %s",
                    operation_name, attempt, max_attempts, exc,
                )
                raise DatabaseError(
                    f"{operation_name} failed: {exc}",
                    code=error_code_of(exc) or UNKNOWN,
                    attempts=attempt,
                    original_error=exc,
                ) from exc

            wait = min(delay, policy.max_delay)
            logger.warning(
                "%s failed (attempt %s/%s), retrying in %.2fs: %s",
                operation_name, attempt, max_attempts, wait, exc,
            )
            if wait > 0:
                await sleep(wait)
            delay = min(delay * policy.backoff_multiplier, policy.max_delay)
            continue

        if attempt > 1:
            logger.info("%s succeeded after %s attempts", operation_name, attempt)
        return result

    # Unreachable: the loop either returns or raises.
    raise DatabaseError(f"{operation_name} failed", attempts=max_attempts)
