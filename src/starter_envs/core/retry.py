"""Exponential backoff retry policy for fallible AWS calls.

Provisioning calls are infrequent (account creation, key issuance, role
assumption), so the policy uses plain doubling delays without jitter or a
delay cap.

Usage:
    policy = RetryPolicy(max_retries=5, base_delay_ms=1000)
    key = policy.call(iam.create_access_key, UserName=name,
                      description="access key creation")
"""

import logging
import time
from typing import Any, Callable, Optional, Sequence, Type, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLING_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
})


def is_throttling_error(exc: BaseException) -> bool:
    """Check whether a botocore ClientError carries a rate-limit error code."""
    response = getattr(exc, "response", None) or {}
    return response.get("Error", {}).get("Code") in THROTTLING_ERROR_CODES


class RetryPolicy:
    """Retries an operation with delay ``base_delay_ms * 2**attempt``.

    Total calls are at most ``max_retries + 1``. When every attempt fails the
    last exception is re-raised unchanged so callers can still match on its
    type.
    """

    def __init__(
        self,
        max_retries: int = 5,
        base_delay_ms: int = 1000,
        retryable: Sequence[Type[BaseException]] = (Exception,),
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        should_retry: Optional[Callable[[BaseException], bool]] = None,
    ) -> None:
        """Initialize retry policy.

        Args:
            max_retries: Retries after the initial attempt
            base_delay_ms: Delay before the first retry in milliseconds
            retryable: Exception types that trigger a retry
            on_retry: Optional callback(attempt, exc, delay_seconds)
            should_retry: Optional filter; a retryable exception it rejects
                is raised immediately
        """
        if max_retries < 0:
            raise ValueError("max_retries must be zero or greater")
        if base_delay_ms < 0:
            raise ValueError("base_delay_ms must be zero or greater")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.retryable = tuple(retryable)
        self.on_retry = on_retry
        self.should_retry = should_retry

    def delay_for(self, attempt: int) -> float:
        """Get the delay in seconds after a failed attempt (0-based)."""
        return self.base_delay_ms * (2 ** attempt) / 1000.0

    def with_retryable(
        self,
        *exception_types: Type[BaseException],
        should_retry: Optional[Callable[[BaseException], bool]] = None,
    ) -> "RetryPolicy":
        """Get a copy of this policy that only retries the given exception types."""
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            retryable=exception_types,
            on_retry=self.on_retry,
            should_retry=should_retry,
        )

    def call(self, operation: Callable[..., T], *args: Any,
             description: str = "operation", **kwargs: Any) -> T:
        """Invoke operation, retrying on retryable failures.

        Args:
            operation: Callable to invoke
            *args: Positional arguments for operation
            description: Label used in retry log messages
            **kwargs: Keyword arguments for operation

        Returns:
            First successful result of operation
        """
        for attempt in range(self.max_retries + 1):
            try:
                return operation(*args, **kwargs)
            except self.retryable as exc:
                if attempt >= self.max_retries:
                    raise
                if self.should_retry is not None and not self.should_retry(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Retrying %s (attempt %d/%d) after %s: %s",
                    description,
                    attempt + 1,
                    self.max_retries,
                    type(exc).__name__,
                    exc,
                )
                if self.on_retry:
                    self.on_retry(attempt, exc, delay)
                time.sleep(delay)

        # range() always runs at least once and either returns or raises
        raise AssertionError("unreachable")
