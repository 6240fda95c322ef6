"""
Tests for the Polling Observer.
"""
import asyncio

import pytest

from deadblock.shared.errors import StoreUnavailableError, UnauthenticatedError
from deadblock.shared.polling import PollingObserver, observe


async def _yield(delay):
    await asyncio.sleep(0)


def recording_sleep(delays):
    async def _sleep(delay):
        delays.append(delay)
        await asyncio.sleep(0)

    return _sleep


def sequence_fetch(values, done):
    """Return ``values`` in order, then repeat the last one and set ``done``."""
    remaining = list(values)

    async def fetch():
        if len(remaining) > 1:
            return remaining.pop(0)
        done.set()
        return remaining[0]

    return fetch


class TestChangeDetection:
    async def test_status_flip_fires_exactly_once(self):
        done = asyncio.Event()
        seen = []
        observer = PollingObserver(
            sequence_fetch(["pending", "pending", "accepted"], done), 1.0, sleep=_yield
        )

        observer.subscribe(seen.append)
        await asyncio.wait_for(done.wait(), 1)
        await asyncio.sleep(0)
        observer.dispose()

        assert seen == ["accepted"]

    async def test_initial_value_is_compared_on_first_poll(self):
        done = asyncio.Event()
        seen = []
        observer = PollingObserver(
            sequence_fetch(["accepted"], done), 1.0, initial="pending", sleep=_yield
        )

        observer.subscribe(seen.append)
        await asyncio.wait_for(done.wait(), 1)
        await asyncio.sleep(0)
        observer.dispose()

        assert seen == ["accepted"]

    async def test_disappearing_row_is_reported_as_none(self):
        done = asyncio.Event()
        seen = []
        observer = PollingObserver(
            sequence_fetch([{"id": 1}, None], done),
            1.0,
            key=lambda row: row["id"] if row else None,
            sleep=_yield,
        )

        observer.subscribe(seen.append)
        await asyncio.wait_for(done.wait(), 1)
        await asyncio.sleep(0)
        observer.dispose()

        assert seen == [None]

    async def test_coroutine_callbacks_are_awaited(self):
        done = asyncio.Event()
        seen = []

        async def on_change(value):
            await asyncio.sleep(0)
            seen.append(value)

        observer = PollingObserver(sequence_fetch([1, 2], done), 1.0, sleep=_yield)
        observer.subscribe(on_change)
        await asyncio.wait_for(done.wait(), 1)
        for _ in range(3):
            await asyncio.sleep(0)
        observer.dispose()

        assert seen == [2]

    async def test_failing_callback_does_not_stop_polling(self):
        done = asyncio.Event()
        calls = []

        def on_change(value):
            calls.append(value)
            raise RuntimeError("boom")

        observer = PollingObserver(sequence_fetch([1, 2, 3], done), 1.0, sleep=_yield)
        observer.subscribe(on_change)
        await asyncio.wait_for(done.wait(), 1)
        await asyncio.sleep(0)
        observer.dispose()

        assert calls == [2, 3]


class TestLifecycle:
    async def test_dispose_during_fetch_discards_the_result(self):
        started = asyncio.Event()
        release = asyncio.Event()
        seen = []

        async def fetch():
            started.set()
            await release.wait()
            return "accepted"

        observer = PollingObserver(fetch, 1.0, initial="pending", sleep=_yield)
        observer.subscribe(seen.append)
        await asyncio.wait_for(started.wait(), 1)

        observer.dispose()
        release.set()
        await observer.wait_closed()

        assert seen == []
        assert observer.disposed

    async def test_dispose_is_idempotent_and_blocks_resubscribe(self):
        observer = PollingObserver(lambda: asyncio.sleep(0), 1.0, sleep=_yield)
        observer.subscribe(lambda value: None)

        observer.dispose()
        observer.dispose()

        with pytest.raises(RuntimeError):
            observer.subscribe(lambda value: None)

    async def test_polls_never_overlap(self):
        in_flight = 0
        max_in_flight = 0
        polls = 0
        done = asyncio.Event()

        async def fetch():
            nonlocal in_flight, max_in_flight, polls
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.002)
            in_flight -= 1
            polls += 1
            if polls == 5:
                done.set()
            return polls

        observer = PollingObserver(fetch, 0.001)
        observer.subscribe(lambda value: None)
        await asyncio.wait_for(done.wait(), 2)
        observer.dispose()

        assert max_in_flight == 1

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PollingObserver(lambda: None, 0)

    async def test_observe_returns_disposer(self):
        done = asyncio.Event()
        seen = []

        dispose = observe(sequence_fetch([1, 2], done), 1.0, seen.append, sleep=_yield)
        await asyncio.wait_for(done.wait(), 1)
        await asyncio.sleep(0)
        dispose()

        assert seen == [2]


class TestErrors:
    async def test_transient_errors_back_off_and_recover(self):
        delays = []
        errors = []
        attempts = 0
        done = asyncio.Event()

        async def fetch():
            nonlocal attempts
            attempts += 1
            if attempts <= 3:
                raise StoreUnavailableError("timeout")
            if attempts == 5:
                done.set()
            return "pending"

        observer = PollingObserver(
            fetch,
            1.0,
            on_error=errors.append,
            max_interval=5.0,
            sleep=recording_sleep(delays),
        )
        observer.subscribe(lambda value: None)
        await asyncio.wait_for(done.wait(), 1)
        observer.dispose()

        assert len(errors) == 3
        assert delays[:4] == [2.0, 4.0, 5.0, 1.0]
        assert observer.failures == 0

    async def test_unauthenticated_stops_the_observer(self):
        errors = []
        attempts = 0

        async def fetch():
            nonlocal attempts
            attempts += 1
            raise UnauthenticatedError("token expired")

        observer = PollingObserver(fetch, 1.0, on_error=errors.append, sleep=_yield)
        observer.subscribe(lambda value: None)
        await asyncio.wait_for(observer.wait_closed(), 1)

        assert attempts == 1
        assert observer.disposed
        assert isinstance(errors[0], UnauthenticatedError)
