from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit


@dataclass(frozen=True)
class Item:
    """A single piece of content normalised from any source."""

    title: str
    link: str
    snippet: str
    id: str  # stable across repeated fetches of the same content
    timestamp: datetime | None = None
    timestamp_estimated: bool = False  # True when timestamp is the "now" fallback
    media: str | None = None
    author: str | None = None
    tags: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Source:
    """One pollable URL belonging to a destination."""

    url: str
    destination_index: int = 0

    @property
    def host(self) -> str:
        return urlsplit(self.url).netloc.lower()

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme.lower()

    @property
    def key(self) -> tuple[int, str]:
        return (self.destination_index, self.url)


@dataclass(frozen=True)
class Destination:
    index: int
    name: str
    sources: tuple[Source, ...]
    interval_minutes: float
    send_limit: int
    webhook: str
    thread_id: str | None = None

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0


@dataclass
class HostState:
    """Circuit-breaker bookkeeping for one host."""

    host: str
    cooldown_until: float = 0.0
    strike_count: int = 0
    last_reason: str | None = None
    last_status: int | None = None
    last_error_at: float | None = None


@dataclass
class ConditionalCacheEntry:
    etag: str | None = None
    last_modified: str | None = None


@dataclass
class FetchResponse:
    """Outcome of a successful fetch (2xx or 304)."""

    url: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    not_modified: bool = False

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class CheckOutcome:
    """Outcome of one source check within a destination cycle."""

    source: Source
    status: str  # delivered, no_new, not_modified, cooling_down, failed, delivery_failed
    parser: str | None = None
    items_parsed: int = 0
    items_new: int = 0
    items_delivered: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
