"""Polling Observer: change notifications built on periodic reads.

The hosted store gives clients no dependable push channel, so each screen
polls. ``PollingObserver`` implements the ``ChangeFeed`` interface
(``subscribe(callback) -> unsubscribe``); a push-backed feed can replace it
without touching callers.

Guarantees:
  - the callback runs only when ``key(value)`` differs from the previous
    observation; ``None`` (row gone) is an ordinary value;
  - polls never overlap: the next sleep starts after the fetch returns;
  - after ``dispose()`` nothing is delivered, even from a fetch in flight.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Generic, Protocol, TypeVar

from deadblock.shared.errors import MatchError, UnauthenticatedError

logger = logging.getLogger(__name__)

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

UNSET: Any = object()

# Backoff doubles per consecutive failure, capped at this many doublings
_MAX_DOUBLINGS = 6


class ChangeFeed(Protocol[T_co]):
    def subscribe(self, callback: Callable[[T_co | None], Any]) -> Callable[[], None]: ...


class PollingObserver(Generic[T]):
    """Poll ``fetch`` every ``interval`` seconds and report changes.

    ``key`` reduces a value to what matters (e.g. ``(status, new_game_id)``).
    Without ``initial`` the first poll only sets the baseline; with it, the
    first poll is compared against ``key(initial)``.

    Fetch errors go to ``on_error`` and polling continues; with
    ``max_interval`` set, consecutive failures back off up to that cap.
    ``UnauthenticatedError`` ends the observer.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T | None]],
        interval: float,
        *,
        key: Callable[[T | None], Hashable] | None = None,
        initial: T | None = UNSET,
        on_error: Callable[[Exception], Any] | None = None,
        max_interval: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "observer",
    ) -> None:
        if interval <= 0:
            raise ValueError("Poll interval must be positive")
        self._fetch = fetch
        self.interval = interval
        self.max_interval = max_interval
        self._key = key or (lambda value: value)
        self._last_key: Any = UNSET if initial is UNSET else self._key(initial)
        self._on_error = on_error
        self._sleep = sleep
        self.name = name
        self._callback: Callable[[T | None], Any] | None = None
        self._task: asyncio.Task | None = None
        self._disposed = False
        self.failures = 0

    def subscribe(self, callback: Callable[[T | None], Any]) -> Callable[[], None]:
        if self._task is not None or self._disposed:
            raise RuntimeError(f"{self.name} is already subscribed")
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self.dispose

    def dispose(self) -> None:
        """Stop polling. Idempotent; safe to call from inside the callback."""
        if self._disposed:
            return
        self._disposed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug(f"{self.name} disposed")

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def wait_closed(self) -> None:
        """Wait until the polling task has finished."""
        if self._task is not None:
            await asyncio.wait({self._task})

    def next_delay(self) -> float:
        if not self.failures or self.max_interval is None:
            return self.interval
        backoff = self.interval * 2 ** min(self.failures, _MAX_DOUBLINGS)
        return min(backoff, max(self.max_interval, self.interval))

    async def _run(self) -> None:
        while not self._disposed:
            try:
                value = await self._fetch()
            except asyncio.CancelledError:
                raise
            except UnauthenticatedError as e:
                logger.warning(f"{self.name} stopped: {e}")
                await self._report(e)
                self._disposed = True
                return
            except Exception as e:
                self.failures += 1
                if isinstance(e, MatchError):
                    logger.warning(f"{self.name} poll failed ({self.failures}): {e}")
                else:
                    logger.exception(f"{self.name} poll raised {type(e).__name__}")
                await self._report(e)
            else:
                if self.failures:
                    logger.info(f"{self.name} recovered after {self.failures} failed polls")
                self.failures = 0
                await self._observe(value)
            if self._disposed:
                return
            await self._sleep(self.next_delay())

    async def _observe(self, value: T | None) -> None:
        if self._disposed:
            return
        current = self._key(value)
        if self._last_key is UNSET:
            self._last_key = current
            return
        if current == self._last_key:
            return
        self._last_key = current
        await self._call(self._callback, value)

    async def _report(self, error: Exception) -> None:
        if self._on_error is not None and not self._disposed:
            await self._call(self._on_error, error)

    async def _call(self, func: Callable[[Any], Any] | None, arg: Any) -> None:
        if func is None:
            return
        try:
            result = func(arg)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"{self.name} callback failed")


def observe(
    poll_fn: Callable[[], Awaitable[T | None]],
    interval: float,
    on_change: Callable[[T | None], Any],
    **kwargs: Any,
) -> Callable[[], None]:
    """Start polling ``poll_fn`` and return the disposer."""
    return PollingObserver(poll_fn, interval, **kwargs).subscribe(on_change)
