"""
Debounced value holder.

Search boxes update on every keystroke; the query key should only move once
typing pauses. ``DebouncedValue`` publishes the latest value after ``delay``
seconds without further changes. It knows nothing about queries.
"""
import asyncio
import logging
from collections.abc import Callable
from typing import Generic, TypeVar

from console_query.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DebouncedValue(Generic[T]):
    """
    Delay propagation of a rapidly changing value.

    Every ``set()`` with a new value restarts the timer; when it expires the
    latest value becomes ``value`` and listeners are called with it. Setting
    the value that is already pending (or already published, with nothing
    pending) does not restart anything.

    Example:
        search = DebouncedValue("", on_change=resource_list.apply_search)
        search.set("pro")
        search.set("prod")   # timer restarts; only "prod" is published

    Args:
        initial: Published value before the first change.
        delay: Seconds of quiet before publishing. Defaults to the
            configured ``search_debounce_ms``.
        on_change: Optional listener, same as calling ``add_listener``.
    """

    def __init__(
        self,
        initial: T,
        delay: float | None = None,
        on_change: Callable[[T], None] | None = None,
    ) -> None:
        if delay is None:
            delay = get_settings().search_debounce_seconds
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self._delay = delay
        self._value = initial
        self._pending = initial
        self._handle: asyncio.TimerHandle | None = None
        self._listeners: list[Callable[[T], None]] = []
        self._flushed = asyncio.Event()
        self._flushed.set()
        if on_change is not None:
            self._listeners.append(on_change)

    @property
    def value(self) -> T:
        """The last published value."""
        return self._value

    @property
    def pending(self) -> T:
        """The most recent value passed to ``set``."""
        return self._pending

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    def add_listener(self, listener: Callable[[T], None]) -> None:
        self._listeners.append(listener)

    def set(self, value: T) -> None:
        """Record a new value and (re)start the timer."""
        if self._handle is None and value == self._value:
            return
        if self._handle is not None and value == self._pending:
            return
        self._pending = value
        self._cancel_timer()
        if value == self._value:
            # Typed back to the published value before the timer fired
            return
        loop = asyncio.get_running_loop()
        self._flushed.clear()
        self._handle = loop.call_later(self._delay, self._publish)

    def flush(self) -> None:
        """Publish the pending value now (e.g. on Enter)."""
        if self._handle is None:
            return
        self._cancel_timer()
        self._publish()

    def cancel(self) -> None:
        """Drop the pending value; ``value`` stays as it was."""
        self._cancel_timer()
        self._pending = self._value

    def reset(self, value: T) -> None:
        """Set both published and pending value without notifying listeners."""
        self._cancel_timer()
        self._value = value
        self._pending = value

    async def wait(self) -> T:
        """Wait until nothing is pending and return the published value."""
        await self._flushed.wait()
        return self._value

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._flushed.set()

    def _publish(self) -> None:
        self._handle = None
        self._flushed.set()
        if self._pending == self._value:
            return
        self._value = self._pending
        logger.debug("debounce_publish delay=%s", self._delay)
        for listener in list(self._listeners):
            listener(self._value)
