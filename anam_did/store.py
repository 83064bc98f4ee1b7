"""
Ephemeral key/value storage with expiry, shared by the Challenge Service
and the VP Session Store.

``TTLStore`` is the capability both services depend on. ``InMemoryTTLStore``
is the single-process implementation; a multi-instance deployment swaps in a
shared store (e.g. Redis with native TTLs) behind the same four methods.
State is process-local and lost on restart.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class TTLStore(Protocol):
    def put(self, key: str, value: Any, expires_at: datetime) -> None: ...

    def get(self, key: str) -> Optional[Any]: ...

    def delete(self, key: str) -> bool: ...

    def sweep_expired(self, now: datetime) -> int: ...


class InMemoryTTLStore:
    """
    Dict-backed TTLStore

    Entries are kept past their expiry until swept so callers can tell an
    expired key from an unknown one.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[Any, datetime]] = {}
        self._lock = threading.RLock()

    def put(self, key: str, value: Any, expires_at: datetime) -> None:
        with self._lock:
            self._entries[key] = (value, expires_at)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
        return entry[0] if entry else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def sweep_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if now > expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def values(self) -> Iterator[Any]:
        with self._lock:
            snapshot = [value for value, _ in self._entries.values()]
        return iter(snapshot)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class Sweeper:
    """
    Background thread calling ``task`` every ``interval`` seconds

    Failures in ``task`` are logged and the loop keeps running.
    """

    def __init__(self, name: str, task: Callable[[], Any], interval: float):
        self.name = name
        self._task = task
        self._interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("[%s] Sweeper started (interval: %ss)", self.name, self._interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval + 1)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._task()
            except Exception:
                logger.exception("[%s] Sweep failed", self.name)


def iter_values(store: TTLStore) -> Iterator[Any]:
    """Stored values for stores that can enumerate, nothing otherwise"""
    return store.values() if hasattr(store, "values") else iter(())
