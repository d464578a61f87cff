# src/orchestrator/events.py - v1
"""Subscribe/unsubscribe event channels.

Subscribers may be plain functions or coroutine functions. A subscriber
that raises is logged and skipped; the remaining subscribers still run.
Cancelling a subscription is idempotent and safe after the channel has
been cleared.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

Subscriber = Callable[..., Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by ``EventChannel.subscribe``."""

    def __init__(self, channel: EventChannel, callback: Subscriber) -> None:
        self._channel: EventChannel | None = channel
        self._callback = callback

    @property
    def active(self) -> bool:
        return self._channel is not None and self._channel._has(self)

    def cancel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel._remove(self)


class EventChannel:
    """Ordered fan-out of one kind of event."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscriptions: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: Subscriber) -> Subscription:
        sub = Subscription(self, callback)
        self._subscriptions.append(sub)
        return sub

    async def emit(self, *args: Any) -> None:
        for sub in list(self._subscriptions):
            try:
                result = sub._callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber on '%s' channel failed", self.name)

    def clear(self) -> None:
        self._subscriptions.clear()

    def _has(self, sub: Subscription) -> bool:
        return sub in self._subscriptions

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
