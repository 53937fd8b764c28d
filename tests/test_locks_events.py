import threading
import time

import pytest

from events import InvalidationRegistry
from locks import SingleFlight


def test_concurrent_callers_share_one_in_flight_call() -> None:
    flight = SingleFlight()
    started = threading.Event()
    release = threading.Event()
    calls = []
    results = []

    def slow_check() -> int:
        calls.append(1)
        started.set()
        release.wait(timeout=5)
        return 42

    leader = threading.Thread(target=lambda: results.append(flight.do("g1", slow_check)))
    leader.start()
    assert started.wait(timeout=5)
    assert flight.in_flight("g1")

    follower = threading.Thread(target=lambda: results.append(flight.do("g1", slow_check)))
    follower.start()
    time.sleep(0.1)
    release.set()
    leader.join(timeout=5)
    follower.join(timeout=5)

    assert results == [42, 42]
    assert len(calls) == 1
    assert not flight.in_flight("g1")


def test_failed_call_releases_the_key() -> None:
    flight = SingleFlight()

    def boom() -> int:
        raise RuntimeError("store unavailable")

    with pytest.raises(RuntimeError):
        flight.do("g1", boom)
    assert not flight.in_flight("g1")
    assert flight.do("g1", lambda: 7) == 7


def test_different_keys_do_not_wait_for_each_other() -> None:
    flight = SingleFlight()
    assert flight.do("a", lambda: flight.do("b", lambda: "inner")) == "inner"


def test_listeners_are_notified_until_unsubscribed() -> None:
    registry = InvalidationRegistry("test")
    seen = []
    unsubscribe = registry.subscribe(seen.append)

    assert registry.notify("accounts") == 1
    unsubscribe()
    unsubscribe()
    assert registry.notify("credit_cards") == 0
    assert seen == ["accounts"]


def test_failing_listener_does_not_stop_the_others() -> None:
    registry = InvalidationRegistry("test")
    seen = []

    def broken(reason: str) -> None:
        raise RuntimeError(reason)

    registry.subscribe(broken)
    registry.subscribe(seen.append)

    assert registry.notify("recurring_events") == 2
    assert seen == ["recurring_events"]
