"""Change notifications for lockfile documents.

Subscribers receive a ``LockfileChange`` after every store mutation and
whenever an external edit is detected. Delivery is fire-and-forget with at
most one notification in flight: changes published while subscribers are
still running are coalesced (latest wins) and delivered afterwards.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from bundle_registry.lockfile.models import CommitMode, LockfileDocument

__all__ = ["LockfileChange", "LockfileEvents", "Subscriber", "Unsubscribe"]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LockfileChange:
    """A lockfile changed.

    Attributes:
        mode: Which document changed
        document: New content, or None if the document was deleted
        external: True when the change was made outside this store
    """

    mode: CommitMode
    document: LockfileDocument | None
    external: bool = False


Subscriber = Callable[[LockfileChange], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


class LockfileEvents:
    """Subscription hub with coalescing, single-flight delivery."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._pending: LockfileChange | None = None
        self._delivering = False

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """Register ``callback``; returns a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, change: LockfileChange) -> None:
        """Deliver ``change`` to all subscribers.

        If a delivery is already running the change is parked and picked up
        by the running delivery loop, so callers never wait on each other.
        """
        self._pending = change
        if self._delivering:
            return

        self._delivering = True
        try:
            while self._pending is not None:
                current, self._pending = self._pending, None
                for callback in list(self._subscribers):
                    await self._deliver(callback, current)
        finally:
            self._delivering = False

    @staticmethod
    async def _deliver(callback: Subscriber, change: LockfileChange) -> None:
        try:
            result = callback(change)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning(
                "lockfile.subscriber_failed", mode=change.mode.value, error=str(exc)
            )
