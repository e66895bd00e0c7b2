"""Scoped releases: every release runs, failures are collected and reported."""
import logging
from collections.abc import Awaitable, Callable

from ..exceptions import ReleaseError

logger = logging.getLogger("vaultlock.master")


class ScopedReleases:
    """Async scope that runs registered releases in LIFO order on exit.

    A failing release does not prevent the remaining ones from running.
    All failures are raised together as ``ReleaseError``; if the scope body
    itself raised, that exception is chained as the cause.
    """

    def __init__(self):
        self._releases: list[tuple[str, Callable[[], Awaitable]]] = []

    def push(self, name: str, release: Callable[[], Awaitable]) -> None:
        self._releases.append((name, release))

    async def release(self) -> list[tuple[str, BaseException]]:
        """Run and clear all pending releases, returning the failures."""
        errors = []
        while self._releases:
            name, release = self._releases.pop()
            try:
                await release()
            except Exception as err:
                logger.error("Release %s failed: %s", name, err)
                errors.append((name, err))
        return errors

    async def __aenter__(self) -> "ScopedReleases":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        errors = await self.release()
        if errors:
            raise ReleaseError(errors) from exc
        return False
