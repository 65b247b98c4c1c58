"""
Authenticated request execution with bounded credential retries.

A single retry loop shared by every authenticated operation: run the
attempt under a valid token and a deadline, and on a rejected credential
force a refresh and try again until the retry budget runs out.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .credentials import TokenLifecycleManager
from .deadline import run_with_deadline
from .errors import AuthExhausted, AuthorizationRejected

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass
class RetryBudget:
    """Attempts made versus attempts allowed for one logical operation."""
    attempts_allowed: int
    attempts_made: int = 0

    def __post_init__(self):
        if self.attempts_allowed < 1:
            raise ValueError("attempts_allowed must be >= 1")

    @classmethod
    def for_retries(cls, max_retries: int) -> "RetryBudget":
        """Budget for one initial attempt plus max_retries retries."""
        return cls(attempts_allowed=max_retries + 1)

    @property
    def can_retry(self) -> bool:
        return self.attempts_made < self.attempts_allowed

    @property
    def exhausted(self) -> bool:
        return not self.can_retry

    def record_attempt(self) -> None:
        if self.exhausted:
            raise RuntimeError(
                f"retry budget exceeded: {self.attempts_made}/{self.attempts_allowed}"
            )
        self.attempts_made += 1


class AuthenticatedRequestExecutor:
    """Runs authenticated units of work with refresh-and-retry on 401."""

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize the executor.

        Args:
            token_manager: Source of valid bearer tokens
            max_retries: Retries allowed after the initial attempt
            timeout: Deadline in seconds for each attempt

        Raises:
            ValueError: If max_retries is negative or timeout is not positive
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.token_manager = token_manager
        self.max_retries = max_retries
        self.timeout = timeout

    async def execute(self, attempt: Callable[[str], Awaitable[T]]) -> T:
        """Run an attempt callable until it succeeds or fails terminally.

        Args:
            attempt: Builds, sends and decodes one request using the given
                bearer token. Raises AuthorizationRejected when the server
                rejects the token.

        Returns:
            The attempt's decoded result

        Raises:
            AuthExhausted: If the token is still rejected after max_retries retries
            CredentialUnavailable: If a token cannot be issued
            OperationTimedOut: If an attempt exceeds its deadline
            Exception: Any other failure raised by the attempt, unchanged
        """
        budget = RetryBudget.for_retries(self.max_retries)
        force_refresh = False

        while True:
            token = await self.token_manager.ensure_valid(force_refresh=force_refresh)
            budget.record_attempt()
            try:
                return await run_with_deadline(attempt(token), self.timeout)
            except AuthorizationRejected as e:
                if budget.exhausted:
                    raise AuthExhausted(budget.attempts_made, e.detail) from e
                logger.warning(
                    "Credential rejected (attempt %d/%d), refreshing token",
                    budget.attempts_made,
                    budget.attempts_allowed,
                )
                force_refresh = True
