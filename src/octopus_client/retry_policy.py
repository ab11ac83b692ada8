"""
RetryPolicy module for retrying transient failures with exponential backoff and jitter
"""

import random
import logging
from typing import Callable, Optional, Dict, Any

from .cancellation import CancellationToken
from .outcomes import Outcome


logger = logging.getLogger(__name__)


class RetryPolicy:
    """Retries transient outcomes of idempotent operations within a fixed attempt budget"""

    # Methods that can safely be repeated without duplicating server-side effects
    IDEMPOTENT_METHODS = {'GET', 'HEAD', 'OPTIONS', 'PUT', 'DELETE'}

    def __init__(self, max_attempts: int = 3, backoff_factor: float = 2.0,
                 base_delay: float = 1.0, max_delay: float = 30.0, jitter: bool = True,
                 rng: Optional[random.Random] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, retries: Dict[str, Any]) -> 'RetryPolicy':
        return cls(
            max_attempts=int(retries.get('max_attempts', 3)),
            backoff_factor=float(retries.get('backoff_factor', 2.0)),
            base_delay=float(retries.get('base_delay', 1.0)),
            max_delay=float(retries.get('max_delay', 30.0)),
            jitter=bool(retries.get('jitter', True))
        )

    def is_retryable(self, method: str, idempotency_key: Optional[str] = None) -> bool:
        """POST and other non-idempotent verbs are only repeated under an idempotency key"""
        return method.upper() in self.IDEMPOTENT_METHODS or idempotency_key is not None

    def compute_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Calculate the wait before the next attempt

        Args:
            attempt: Number of the attempt that just failed (1-based)
            retry_after: Server-supplied minimum delay, if any

        Returns:
            Delay in seconds
        """
        # base_delay * (factor ^ (attempt - 1)), capped
        delay = min(self.max_delay, self.base_delay * (self.backoff_factor ** (attempt - 1)))

        if self.jitter and delay > 0:
            # Equal jitter keeps at least half of the computed backoff
            delay = delay / 2 + self._rng.uniform(0, delay / 2)

        if retry_after is not None:
            delay = max(delay, min(retry_after, self.max_delay))

        return delay

    def with_retry(self, operation: Callable[[], Outcome], method: str = "GET",
                   idempotency_key: Optional[str] = None,
                   cancellation: Optional[CancellationToken] = None,
                   on_retry: Optional[Callable[[int, Outcome, float], None]] = None) -> Outcome:
        """
        Run an operation, retrying only transient failures

        Args:
            operation: Zero-argument callable performing one attempt
            method: HTTP verb of the operation, used for the idempotency check
            idempotency_key: Opts a non-idempotent operation into retries;
                the caller is responsible for sending it to the server
            cancellation: Token checked before each attempt and during backoff
            on_retry: Called with (attempt, outcome, delay) before each backoff wait

        Returns:
            First non-transient outcome, Cancelled, or the last transient
            failure once the attempt budget is exhausted. The outcome's
            attempts field holds the number of attempts made.
        """
        cancellation = cancellation or CancellationToken()
        retryable = self.is_retryable(method, idempotency_key)
        attempt = 0

        while True:
            if cancellation.cancelled:
                return Outcome.cancelled(attempts=attempt)

            attempt += 1
            outcome = operation()
            outcome.attempts = attempt

            if not outcome.is_transient:
                return outcome

            if not retryable:
                logger.warning(
                    f"{method.upper()} {outcome.uri} failed transiently and is not retried "
                    f"(non-idempotent without idempotency key): {outcome.message}"
                )
                return outcome

            if attempt >= self.max_attempts:
                logger.warning(
                    f"{method.upper()} {outcome.uri} failed after {attempt} attempts: {outcome.message}"
                )
                return outcome

            delay = self.compute_delay(attempt, outcome.retry_after)
            logger.warning(
                f"Transient failure on {method.upper()} {outcome.uri} "
                f"(attempt {attempt}/{self.max_attempts}), retrying in {delay:.2f}s: {outcome.message}"
            )
            if on_retry:
                on_retry(attempt, outcome, delay)

            if cancellation.wait(delay):
                return Outcome.cancelled(attempts=attempt, uri=outcome.uri)
