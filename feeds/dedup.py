"""Selection of new items and the bounded per-source record of delivered ids."""

from __future__ import annotations

import threading
from typing import Iterable, Mapping, Sequence

from core.models import Item

SeenKey = tuple[int, str]  # (destination index, source url)


def _newest_first(items: list[Item]) -> list[Item]:
    # Parser order is trusted unless every item carries a real timestamp.
    if items and all(i.timestamp is not None and not i.timestamp_estimated for i in items):
        return sorted(items, key=lambda i: i.timestamp, reverse=True)
    return items


def select_new(
    items: Sequence[Item],
    seen: Sequence[str],
    send_limit: int,
    max_size: int,
) -> tuple[list[Item], list[str]]:
    """Return ``(to_deliver, updated_seen)``.

    ``to_deliver`` holds at most ``send_limit`` of the most recent unseen
    items, oldest first. ``updated_seen`` records every unseen id, including
    those beyond ``send_limit``, ahead of the previous ids and truncated to
    ``max_size``.
    """
    known = set(seen)
    fresh: list[Item] = []
    for item in items:
        if not item.id or item.id in known:
            continue
        known.add(item.id)
        fresh.append(item)

    fresh = _newest_first(fresh)
    to_deliver = list(reversed(fresh[: max(send_limit, 0)]))
    updated = ([i.id for i in fresh] + list(seen))[:max_size]
    return to_deliver, updated


class SeenCache:
    """In-memory ids per (destination, source); persisted by ``CacheStore``."""

    def __init__(self, max_size: int = 500) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._ids: dict[SeenKey, list[str]] = {}
        self._dirty: set[SeenKey] = set()
        self._lock = threading.Lock()

    def load(self, mapping: Mapping[SeenKey, Sequence[str]]) -> None:
        with self._lock:
            for key, ids in mapping.items():
                self._ids[key] = list(ids)[: self.max_size]

    def get(self, key: SeenKey) -> list[str]:
        with self._lock:
            return list(self._ids.get(key, ()))

    def commit(self, key: SeenKey, ids: Sequence[str], exclude: Iterable[str] = ()) -> list[str]:
        """Store ``ids`` for ``key`` minus ``exclude`` (ids whose delivery failed)."""
        dropped = set(exclude)
        kept = [i for i in ids if i not in dropped][: self.max_size]
        with self._lock:
            self._ids[key] = kept
            self._dirty.add(key)
        return kept

    def take_dirty(self) -> dict[SeenKey, list[str]]:
        with self._lock:
            out = {k: list(self._ids[k]) for k in self._dirty if k in self._ids}
            self._dirty.clear()
            return out

    def mark_clean(self, key: SeenKey) -> None:
        with self._lock:
            self._dirty.discard(key)

    def __len__(self) -> int:
        return len(self._ids)
