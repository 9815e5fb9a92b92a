"""TTL cache used to avoid redundant remote lookups.

Usage:
    cache = ExpiringCache(default_ttl=300, name="customer_detail")
    cache.start_sweeper(interval=60)

    value, found = cache.lookup("customer:42")
    if not found:
        value = load_customer(42)
        cache.set("customer:42", value)

    cache.stop_sweeper()

Expiry is checked on every read, so correctness never depends on the sweeper.
The sweeper only reclaims memory held by keys nobody reads again.
"""
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from shopsync.utils.logger import log

_MISS = object()


class ExpiringCache:
    """Thread-safe in-memory cache with per-entry TTL and an optional background sweep."""

    def __init__(
        self,
        default_ttl: float = 300,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._default_ttl = default_ttl
        self._clock = clock
        self.name = name
        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def lookup(self, key: Hashable) -> Tuple[Any, bool]:
        """Return ``(value, found)``. An expired entry is evicted and reported as a miss."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None, False
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None, False
            return value, True

    def get(self, key: Hashable, default: Any = None) -> Any:
        value, found = self.lookup(key)
        return value if found else default

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._store[key] = (self._clock() + ttl, value)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def sweep(self) -> int:
        """Remove every expired entry. Returns count removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (exp, _) in self._store.items() if now >= exp]
            for k in expired:
                del self._store[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    # ── Sweeper lifecycle ───────────────────────────────

    def start_sweeper(self, interval: float = 60) -> None:
        """Start the periodic sweep thread (no-op if already running)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            args=(interval,),
            name=f"{self.name}-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def stop_sweeper(self, timeout: float = 5.0) -> None:
        if self._sweeper is None:
            return
        self._stop_event.set()
        self._sweeper.join(timeout)
        self._sweeper = None

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            removed = self.sweep()
            if removed:
                log.debug(f"{self.name}: swept {removed} expired entries")
