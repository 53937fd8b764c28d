import logging
from threading import Lock
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


class InvalidationRegistry:
    """Listeners told when finance data changed and derived views are stale."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = Lock()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(self, reason: str) -> int:
        # Listeners may (un)subscribe while being notified.
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(reason)
            except Exception:
                logger.exception(f"{self.name}: listener failed reason={reason}")
        return len(listeners)


finance_data_events = InvalidationRegistry("finance_data")
