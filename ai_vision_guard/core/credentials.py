"""
Bearer credential lifecycle management.

Caches a short-lived token, refreshes it when it is about to expire or
when a caller forces it, and guarantees at most one issuing call per
staleness event.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from .deadline import run_with_deadline
from .errors import CredentialUnavailable

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = timedelta(minutes=1)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credential:
    """Immutable token snapshot.

    Replaced as a whole on refresh so no reader ever sees a token paired
    with another token's expiry.
    """
    token: str
    expires_at: datetime

    def __post_init__(self):
        if not self.token or not self.token.strip():
            raise ValueError("token cannot be empty")
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    def is_fresh(self, now: datetime, margin: timedelta) -> bool:
        """True while the token is valid for longer than the safety margin."""
        return now < self.expires_at - margin

    @classmethod
    def from_epoch_millis(cls, token: str, expires_at_ms: int) -> "Credential":
        """Build a credential from an epoch-milliseconds expiry."""
        return cls(
            token=token,
            expires_at=datetime.fromtimestamp(expires_at_ms / 1000, tz=timezone.utc),
        )


class TokenState(Enum):
    """Observable lifecycle state of the managed credential."""
    UNINITIALIZED = "uninitialized"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    UNRECOVERABLE = "unrecoverable"


CredentialIssuer = Callable[[], Awaitable[Credential]]


class TokenLifecycleManager:
    """Owns the current credential and refreshes it race-free.

    The fast path reads the cached snapshot without locking. Refreshes
    happen under an instance-scoped asyncio.Lock with a second staleness
    check after the lock is acquired.
    """

    def __init__(
        self,
        issuer: CredentialIssuer,
        timeout: float,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the manager.

        Args:
            issuer: Async callable performing the credential-issuing call
            timeout: Deadline in seconds for one issuing call
            refresh_margin: Refresh when the token expires within this margin
            clock: Source of the current UTC time

        Raises:
            ValueError: If timeout is not positive or margin is negative
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        if refresh_margin < timedelta(0):
            raise ValueError("refresh_margin cannot be negative")

        self._issuer = issuer
        self.timeout = timeout
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock: Optional[asyncio.Lock] = None
        self._generation = 0
        self._failed = False
        self.issue_count = 0

    @property
    def credential(self) -> Optional[Credential]:
        """Current credential snapshot, if any."""
        return self._credential

    @property
    def state(self) -> TokenState:
        if self._failed:
            return TokenState.UNRECOVERABLE
        credential = self._credential
        if credential is None:
            return TokenState.UNINITIALIZED
        if credential.is_fresh(self._clock(), self.refresh_margin):
            return TokenState.VALID
        return TokenState.NEAR_EXPIRY

    def _refresh_lock(self) -> asyncio.Lock:
        # Created on first use so it belongs to the loop that awaits it.
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _fresh_token(self) -> Optional[str]:
        credential = self._credential
        if credential is not None and credential.is_fresh(self._clock(), self.refresh_margin):
            return credential.token
        return None

    async def ensure_valid(self, force_refresh: bool = False) -> str:
        """Make sure a usable token is cached and return it.

        Args:
            force_refresh: Issue a new token even if the cached one looks valid

        Returns:
            Snapshot of the current token string

        Raises:
            CredentialUnavailable: If the issuing call fails
        """
        if not force_refresh:
            token = self._fresh_token()
            if token is not None:
                return token

        generation = self._generation
        async with self._refresh_lock():
            if force_refresh:
                # Another caller refreshed while we waited for the lock.
                if self._generation != generation and self._credential is not None:
                    return self._credential.token
            else:
                token = self._fresh_token()
                if token is not None:
                    return token

            credential = await self._issue()
            self._credential = credential
            self._generation += 1
            self._failed = False
            return credential.token

    async def _issue(self) -> Credential:
        self.issue_count += 1
        try:
            credential = await run_with_deadline(self._issuer(), self.timeout)
        except CredentialUnavailable:
            self._failed = True
            raise
        except Exception as e:
            self._failed = True
            raise CredentialUnavailable(f"Failed to refresh access token: {e}") from e

        if not isinstance(credential, Credential):
            self._failed = True
            raise CredentialUnavailable("Issuer returned no credential")

        logger.info("Issued access token valid until %s", credential.expires_at.isoformat())
        return credential
