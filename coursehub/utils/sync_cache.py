"""Client-side synchronization cache for remote JSON resources.

`SyncCache` keeps the last known value of each resource key together with
its validation token (an ETag) and the time it was last refreshed. Reads
within the TTL are answered from memory, concurrent reads of a stale key
share a single retrieval, and revalidation sends the stored token so an
unchanged resource costs a 304 instead of a full payload. Observers
registered with `subscribe` are called every time a key's data changes.

The cache is written for a single asyncio event loop: none of the
bookkeeping awaits, so the check-then-start sequence in `read` cannot
interleave with another caller and no locks are needed. It is not safe to
share one instance between threads.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Set

logger = logging.getLogger("coursehub.cache")

Observer = Callable[[Any], None]
Extractor = Callable[[Any], Any]

DEFAULT_TTL_SECONDS = 120.0


class RetrievalFailed(Exception):
    """A resource could not be fetched; cached state is left untouched."""

    def __init__(self, key: str, reason: str = "", status_code: Optional[int] = None):
        self.key = key
        self.reason = reason
        self.status_code = status_code
        msg = f"failed to fetch {key}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


@dataclass(frozen=True)
class Fetched:
    """Outcome of one retrieval."""
    body: Any = None
    token: Optional[str] = None
    not_modified: bool = False


NOT_MODIFIED = Fetched(not_modified=True)


class ResourceFetcher(Protocol):
    async def fetch(self, key: str, token: Optional[str]) -> Fetched:
        ...


def identity(body: Any) -> Any:
    return body


def unwrap_field(name: str) -> Extractor:
    """Return an extractor that takes `body[name]` when present, else the whole body.

    Listing endpoints wrap their collection (``{"tasks": [...]}``); the
    extractor lets a key declare which field holds its data.
    """
    def extract(body: Any) -> Any:
        if isinstance(body, dict) and body.get(name) is not None:
            return body[name]
        return body

    extract.__name__ = f"unwrap_{name}"
    return extract


@dataclass(eq=False)
class CacheEntry:
    data: Any = None
    has_data: bool = False
    token: Optional[str] = None
    refreshed_at: float = float("-inf")
    observers: Set[Observer] = field(default_factory=set)
    in_flight: Optional[asyncio.Future] = None
    extract: Optional[Extractor] = None


class SyncCache:
    """Deduplicating stale-while-revalidate cache keyed by resource path."""

    def __init__(
        self,
        fetcher: ResourceFetcher,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        extract: Extractor = identity,
        clock: Callable[[], float] = time.monotonic,
        max_entries: Optional[int] = None,
    ):
        self._fetcher = fetcher
        self._default_ttl = default_ttl
        self._extract = extract
        self._clock = clock
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _entry(self, key: str) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry()
            self._entries[key] = entry
            self._evict(keep=key)
        else:
            self._entries.move_to_end(key)
        return entry

    def _evict(self, keep: str) -> None:
        if self._max_entries is None or len(self._entries) <= self._max_entries:
            return
        # oldest first; entries still observed or loading are never dropped
        for key in list(self._entries):
            if len(self._entries) <= self._max_entries:
                break
            entry = self._entries[key]
            if key == keep or entry.observers or entry.in_flight is not None:
                continue
            del self._entries[key]
            logger.debug("cache_evict %s", key)

    def has(self, key: str) -> bool:
        """True when `key` holds data, fresh or stale."""
        entry = self._entries.get(key)
        return entry is not None and entry.has_data

    def peek(self, key: str) -> dict:
        """Return the cached state for `key` without any I/O.

        Unknown keys report an empty state; peeking neither creates an entry
        nor counts as a use for eviction.
        """
        entry = self._entries.get(key) or CacheEntry()
        return {
            "data": entry.data if entry.has_data else None,
            "token": entry.token,
            "refreshed_at": entry.refreshed_at,
        }

    async def read(self, key: str, ttl: Optional[float] = None, extract: Optional[Extractor] = None) -> Any:
        """Return the data for `key`, fetching it only when stale.

        Fresh data is returned without suspending. A stale key joins the
        retrieval already in flight or starts one. `RetrievalFailed` is
        raised to every caller waiting on a failed retrieval.
        """
        entry = self._entry(key)
        if extract is not None:
            entry.extract = extract
        if ttl is None:
            ttl = self._default_ttl
        if entry.has_data and self._clock() - entry.refreshed_at < ttl:
            return entry.data
        task = entry.in_flight
        if task is None:
            task = self._start_retrieval(key, entry)
        # a caller that gives up must not cancel the retrieval others share
        return await asyncio.shield(task)

    def _start_retrieval(self, key: str, entry: CacheEntry) -> asyncio.Future:
        task = asyncio.ensure_future(self._retrieve(key, entry))
        entry.in_flight = task
        task.add_done_callback(functools.partial(self._retrieval_done, key))
        return task

    async def _retrieve(self, key: str, entry: CacheEntry) -> Any:
        try:
            try:
                result = await self._fetcher.fetch(key, entry.token)
            except RetrievalFailed:
                raise
            except Exception as exc:
                raise RetrievalFailed(key, str(exc)) from exc
            if result.not_modified:
                entry.refreshed_at = max(entry.refreshed_at, self._clock())
                logger.debug("cache_not_modified %s", key)
                return entry.data if entry.has_data else None
            extract = entry.extract or self._extract
            data = extract(result.body)
            self._store(key, entry, data, result.token)
            return data
        finally:
            entry.in_flight = None

    def _retrieval_done(self, key: str, task: asyncio.Future) -> None:
        # marks the exception as retrieved for background refreshes nobody awaits
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("cache_fetch_failed %s: %s", key, exc)

    def _store(self, key: str, entry: CacheEntry, data: Any, token: Optional[str]) -> None:
        entry.data = data
        entry.has_data = True
        entry.token = token
        entry.refreshed_at = max(entry.refreshed_at, self._clock())
        for callback in list(entry.observers):
            self._deliver(key, callback, data)

    def _deliver(self, key: str, callback: Observer, data: Any) -> None:
        try:
            callback(data)
        except Exception:
            logger.exception("cache_observer_failed %s", key)

    def subscribe(self, key: str, callback: Observer, extract: Optional[Extractor] = None) -> Callable[[], None]:
        """Call `callback` with the current data (if any) and on every change.

        Returns a function that removes the callback; calling it again is a
        no-op.
        """
        entry = self._entry(key)
        if extract is not None:
            entry.extract = extract
        entry.observers.add(callback)
        if entry.has_data:
            self._deliver(key, callback, entry.data)

        def unsubscribe() -> None:
            entry.observers.discard(callback)

        return unsubscribe

    def write(self, key: str, data: Any, token: Optional[str] = None) -> None:
        """Replace the data for `key` with a value the caller knows is current."""
        entry = self._entry(key)
        self._store(key, entry, data, token)

    def mutate(self, key: str, transform: Callable[[Any], Any]) -> Any:
        """Apply an optimistic local update, keeping the stored token."""
        entry = self._entry(key)
        current = entry.data if entry.has_data else None
        updated = transform(current)
        self._store(key, entry, updated, entry.token)
        return updated

    def invalidate(self, key: str, extract: Optional[Extractor] = None) -> None:
        """Mark `key` stale and refresh it in the background.

        Called outside a running event loop, the entry is only marked stale
        and the next `read` fetches it.
        """
        entry = self._entry(key)
        if extract is not None:
            entry.extract = extract
        entry.refreshed_at = float("-inf")
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        if entry.in_flight is None:
            self._start_retrieval(key, entry)
