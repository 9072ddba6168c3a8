"""A thread-safe, sharded, size-bounded LRU cache with expiring entries."""

from __future__ import annotations

import threading
import time
import weakref
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

NO_EXPIRATION = -1.0
DEFAULT_EXPIRATION = 0.0

_DEFAULT_SHARDS = 64
_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF


def _fnv1a64(data: bytes) -> int:
    digest = _FNV_OFFSET
    for byte in data:
        digest ^= byte
        digest = (digest * _FNV_PRIME) & _MASK64
    return digest


@dataclass
class _Entry:
    value: Any
    size_bytes: int
    expires_at: float | None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class _Shard:
    """One lock-protected LRU segment; the most recent entry is last."""

    def __init__(self, max_size: int) -> None:
        self.lock = threading.Lock()
        self.items: OrderedDict[str, _Entry] = OrderedDict()
        self.current_size = 0
        self.max_size = max_size

    def remove(self, key: str) -> None:
        entry = self.items.pop(key)
        self.current_size -= entry.size_bytes

    def remove_oldest(self) -> None:
        if self.items:
            _, entry = self.items.popitem(last=False)
            self.current_size -= entry.size_bytes


def _janitor_loop(
    cache_ref: Callable[[], Cache | None], interval: float, stop: threading.Event
) -> None:
    while not stop.wait(interval):
        cache = cache_ref()
        if cache is None:
            return
        cache.delete_expired()
        del cache


class Cache:
    """Sharded LRU cache; durations are given in seconds.

    ``max_size_bytes`` is split evenly between the shards; a shard limit of
    zero or less disables size-based eviction. A positive
    ``cleanup_interval`` starts a background thread that removes expired
    entries.
    """

    def __init__(
        self,
        max_size_bytes: int,
        num_shards: int = _DEFAULT_SHARDS,
        default_expiration: float = DEFAULT_EXPIRATION,
        cleanup_interval: float = 0.0,
    ) -> None:
        if num_shards <= 0:
            num_shards = _DEFAULT_SHARDS
        self.num_shards = num_shards
        self.default_expiration = default_expiration
        shard_max = int(max_size_bytes / num_shards)
        self._shards = [_Shard(shard_max) for _ in range(num_shards)]

        self._stop_event: threading.Event | None = None
        self._janitor_thread: threading.Thread | None = None
        if cleanup_interval > 0:
            self._stop_event = threading.Event()
            self._janitor_thread = threading.Thread(
                target=_janitor_loop,
                args=(weakref.ref(self), cleanup_interval, self._stop_event),
                name="cache-janitor",
                daemon=True,
            )
            self._janitor_thread.start()
            weakref.finalize(self, self._stop_event.set)

    def _shard_for(self, key: str) -> _Shard:
        index = _fnv1a64(key.encode("utf-8")) & (self.num_shards - 1)
        return self._shards[index]

    def set(
        self, key: str, value: Any, size_bytes: int, ttl: float = DEFAULT_EXPIRATION
    ) -> None:
        """Store ``value`` under ``key``, evicting least recently used entries."""
        if ttl == DEFAULT_EXPIRATION:
            ttl = self.default_expiration
        expires_at = time.monotonic() + ttl if ttl > 0 else None

        shard = self._shard_for(key)
        with shard.lock:
            existing = shard.items.get(key)
            if existing is not None:
                shard.current_size += size_bytes - existing.size_bytes
                existing.value = value
                existing.size_bytes = size_bytes
                existing.expires_at = expires_at
                shard.items.move_to_end(key)
            else:
                shard.items[key] = _Entry(value, size_bytes, expires_at)
                shard.current_size += size_bytes

            while shard.max_size > 0 and shard.current_size > shard.max_size:
                shard.remove_oldest()

    def get(self, key: str) -> Any:
        """Return the value for ``key``; raise KeyError if missing or expired."""
        shard = self._shard_for(key)
        with shard.lock:
            entry = shard.items.get(key)
            if entry is None:
                raise KeyError(key)
            if entry.expired(time.monotonic()):
                shard.remove(key)
                raise KeyError(key)
            shard.items.move_to_end(key)
            return entry.value

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        shard = self._shard_for(key)
        with shard.lock:
            if key in shard.items:
                shard.remove(key)

    def delete_expired(self) -> None:
        """Remove every expired entry from every shard."""
        now = time.monotonic()
        for shard in self._shards:
            with shard.lock:
                stale = [k for k, entry in shard.items.items() if entry.expired(now)]
                for key in stale:
                    shard.remove(key)

    def stop(self) -> None:
        """Stop the background cleanup thread, if one is running."""
        if self._stop_event is None or self._janitor_thread is None:
            return
        self._stop_event.set()
        if self._janitor_thread is not threading.current_thread():
            self._janitor_thread.join(timeout=1.0)

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.items)
        return total

    def __enter__(self) -> Cache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()