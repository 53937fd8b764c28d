from __future__ import annotations

from concurrent.futures import Future
from threading import Lock
from typing import Callable, Hashable, TypeVar

T = TypeVar("T")


class SingleFlight:
    """At most one in-flight call per key.

    A caller arriving while a call for the same key is running waits for it
    and receives its result (or its exception) instead of starting another.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._calls: dict[Hashable, Future] = {}

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls

    def do(self, key: Hashable, fn: Callable[[], T]) -> T:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = Future()
                self._calls[key] = call
        if not leader:
            return call.result()

        try:
            result = fn()
        except BaseException as exc:
            with self._lock:
                self._calls.pop(key, None)
            call.set_exception(exc)
            raise
        with self._lock:
            self._calls.pop(key, None)
        call.set_result(result)
        return result
