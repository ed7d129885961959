"""Observer registries for poller events."""

from __future__ import annotations

from typing import Any, Callable

import structlog

log = structlog.get_logger()


class Subscription:
    """Handle returned by CallbackRegistry.add; cancel() deregisters."""

    def __init__(self, registry: CallbackRegistry, callback: Callable[..., Any]) -> None:
        self._registry = registry
        self.callback = callback

    @property
    def active(self) -> bool:
        return self._registry.has(self)

    def cancel(self) -> None:
        self._registry.remove(self)


class CallbackRegistry:
    """An ordered list of callbacks, each isolated from the others' failures."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subs: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subs)

    def add(self, callback: Callable[..., Any]) -> Subscription:
        sub = Subscription(self, callback)
        self._subs.append(sub)
        return sub

    def has(self, sub: Subscription) -> bool:
        return any(s is sub for s in self._subs)

    def remove(self, sub: Subscription) -> None:
        self._subs = [s for s in self._subs if s is not sub]

    def emit(self, *args: Any) -> int:
        """Call every callback; return how many raised."""
        failures = 0
        # Iterate over a copy so callbacks may unsubscribe themselves.
        for sub in list(self._subs):
            try:
                sub.callback(*args)
            except Exception:
                failures += 1
                log.error("callback_failed", registry=self.name,
                          callback=getattr(sub.callback, "__qualname__", repr(sub.callback)),
                          exc_info=True)
        return failures
