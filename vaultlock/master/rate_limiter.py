"""
Persistent failed-attempt limiter for master password authentication.

State is a single record ``{failedAttempts, lockoutUntil}`` kept in an
injected ``KeyValueStore``. After ``max_attempts`` consecutive failures
authentication is locked for ``lockout_duration_ms``. Expired lockouts are
cleared lazily on the next read.

Fail-closed: an unreadable counter reports a full lockout, and a failure
that cannot be recorded raises ``RateLimiterUnavailable`` so the attempt
is denied.
"""
import time
import logging
from collections.abc import Callable
from typing import Optional

from pydantic import ValidationError

from ..exceptions import RateLimiterUnavailable
from .config import MAX_ATTEMPTS, LOCKOUT_DURATION_MS
from .records import RATE_LIMIT_RECORD, RateLimitState, RateLimitStatus
from .stores import KeyValueStore

logger = logging.getLogger("vaultlock.master")


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Counts consecutive authentication failures and enforces a lockout."""

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        max_attempts: int = MAX_ATTEMPTS,
        lockout_duration_ms: int = LOCKOUT_DURATION_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.storage: Optional[KeyValueStore] = None
        if storage is not None:
            self.set_storage(storage)
        self.max_attempts = max_attempts
        self.lockout_duration_ms = lockout_duration_ms
        self._clock = clock or _now_ms

    def set_storage(self, storage: KeyValueStore) -> None:
        if not isinstance(storage, KeyValueStore):
            raise TypeError("Rate limiter storage must be a KeyValueStore")
        self.storage = storage

    def _locked_state(self) -> RateLimitState:
        return RateLimitState(
            failed_attempts=self.max_attempts,
            lockout_until=self._clock() + self.lockout_duration_ms,
        )

    def _is_expired(self, lockout_until: Optional[int]) -> bool:
        if lockout_until is None:
            return True
        return self._clock() >= lockout_until

    async def _read(self) -> RateLimitState:
        """Load the persisted state, defaulting to zero attempts.

        Raises:
            RateLimiterUnavailable: If storage is missing, fails, or holds
                an unreadable record.
        """
        if self.storage is None:
            raise RateLimiterUnavailable("Rate limiter storage not initialized")
        try:
            record = await self.storage.get(RATE_LIMIT_RECORD)
            if not record:
                return RateLimitState()
            return RateLimitState.model_validate(record)
        except ValidationError as err:
            raise RateLimiterUnavailable(
                "Rate limit record is unreadable - denying attempt"
            ) from err
        except Exception as err:
            raise RateLimiterUnavailable() from err

    async def _write(self, state: RateLimitState) -> None:
        if self.storage is None:
            raise RateLimiterUnavailable("Rate limiter storage not initialized")
        try:
            await self.storage.put(RATE_LIMIT_RECORD, state.to_record())
        except Exception as err:
            raise RateLimiterUnavailable(
                "Failed to record attempt - denying access"
            ) from err

    async def _load(self) -> RateLimitState:
        """Like ``_read`` but an unreadable counter becomes a full lockout."""
        try:
            return await self._read()
        except RateLimiterUnavailable as err:
            logger.warning("Rate limit state unavailable, failing closed: %s", err)
            return self._locked_state()

    async def get_status(self) -> RateLimitStatus:
        """Current lockout status; clears an expired lockout as a side effect.

        Raises:
            RateLimiterUnavailable: If clearing an expired lockout fails.
        """
        state = await self._load()

        if state.lockout_until is not None and self._is_expired(state.lockout_until):
            await self.reset()
            return RateLimitStatus(
                is_locked=False,
                remaining_attempts=self.max_attempts,
                lockout_remaining_ms=0,
            )

        remaining = max(0, self.max_attempts - state.failed_attempts)
        is_locked = remaining <= 0 and state.lockout_until is not None
        lockout_remaining_ms = (
            max(0, state.lockout_until - self._clock())
            if state.lockout_until is not None else 0
        )
        return RateLimitStatus(
            is_locked=is_locked,
            remaining_attempts=remaining,
            lockout_remaining_ms=lockout_remaining_ms,
        )

    async def get_remaining_attempts(self) -> int:
        state = await self._load()
        return max(0, self.max_attempts - state.failed_attempts)

    async def record_failure(self) -> RateLimitStatus:
        """Count one failed attempt, starting a lockout at ``max_attempts``.

        Returns:
            Status after the failure was recorded.

        Raises:
            RateLimiterUnavailable: If the state cannot be read or written.
        """
        state = await self._read()

        if state.lockout_until is not None and self._is_expired(state.lockout_until):
            state = RateLimitState()

        state.failed_attempts += 1
        if state.failed_attempts >= self.max_attempts:
            state.lockout_until = self._clock() + self.lockout_duration_ms
            logger.warning(
                "Authentication locked for %d ms after %d failed attempts",
                self.lockout_duration_ms, state.failed_attempts,
            )

        await self._write(state)

        remaining = max(0, self.max_attempts - state.failed_attempts)
        return RateLimitStatus(
            is_locked=remaining <= 0,
            remaining_attempts=remaining,
            lockout_remaining_ms=(
                max(0, state.lockout_until - self._clock())
                if state.lockout_until is not None else 0
            ),
        )

    async def reset(self) -> None:
        """Clear the counter; called after a successful authentication."""
        await self._write(RateLimitState())
