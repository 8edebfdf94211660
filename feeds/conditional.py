from __future__ import annotations

import threading
from typing import Iterable, Mapping

from core.models import ConditionalCacheEntry


class ConditionalCache:
    """Last known ``ETag``/``Last-Modified`` per source URL."""

    def __init__(self) -> None:
        self._entries: dict[str, ConditionalCacheEntry] = {}
        self._dirty: set[str] = set()
        self._lock = threading.Lock()

    def load(self, entries: Mapping[str, ConditionalCacheEntry]) -> None:
        with self._lock:
            self._entries.update(entries)

    def get(self, url: str) -> ConditionalCacheEntry | None:
        with self._lock:
            return self._entries.get(url)

    def headers_for(self, url: str) -> dict[str, str]:
        entry = self.get(url)
        headers: dict[str, str] = {}
        if entry is None:
            return headers
        if entry.etag:
            etag = entry.etag
            if not (etag.startswith('"') or etag.startswith('W/"')):
                etag = f'"{etag}"'
            headers["If-None-Match"] = etag
        if entry.last_modified:
            headers["If-Modified-Since"] = entry.last_modified
        return headers

    def update(self, url: str, headers: Mapping[str, str]) -> bool:
        """Record validators from a 2xx response. Returns True if anything changed."""
        etag = headers.get("etag")
        last_modified = headers.get("last-modified")
        if not etag and not last_modified:
            return False
        with self._lock:
            current = self._entries.get(url)
            entry = ConditionalCacheEntry(
                etag=etag or (current.etag if current else None),
                last_modified=last_modified or (current.last_modified if current else None),
            )
            if entry == current:
                return False
            self._entries[url] = entry
            self._dirty.add(url)
            return True

    def forget(self, urls: Iterable[str]) -> list[str]:
        """Drop validators so the next request for each URL fetches the full body."""
        with self._lock:
            dropped = [u for u in urls if self._entries.pop(u, None) is not None]
            self._dirty.update(dropped)
        return dropped

    @property
    def dirty(self) -> bool:
        return bool(self._dirty)

    def take_dirty(self) -> dict[str, ConditionalCacheEntry | None]:
        """Entries changed since the last call; ``None`` marks a forgotten URL."""
        with self._lock:
            out = {url: self._entries.get(url) for url in self._dirty}
            self._dirty.clear()
            return out

    def mark_dirty(self, urls: Iterable[str]) -> None:
        with self._lock:
            self._dirty.update(urls)

    def __len__(self) -> int:
        return len(self._entries)
