"""JSON sources: JSON Feed (jsonfeed.org) and loosely shaped JSON APIs."""

from __future__ import annotations

import json
import logging
from typing import Any

from core.models import FetchResponse, Item, Source
from core.normalize import make_item
from feeds.base import Parser

log = logging.getLogger(__name__)

_LIST_KEYS = ("items", "posts", "data", "entries")


def load_json(resp: FetchResponse) -> Any:
    """Decoded body, or None when the body is not JSON."""
    body = resp.body.lstrip()
    if body[:1] not in (b"{", b"["):
        return None
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _author_name(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("name") or value.get("username")
    return None


class JsonFeedParser(Parser):
    name = "jsonfeed"
    priority = 30

    def applicable(self, source: Source) -> bool:
        return source.scheme in ("http", "https")

    async def parse(self, source, ctx) -> list[Item]:
        resp = await ctx.fetch(accept="json")
        data = load_json(resp)
        if not isinstance(data, dict):
            return []
        version = str(data.get("version") or "")
        entries = data.get("items")
        if not version.startswith("https://jsonfeed.org/") or not isinstance(entries, list):
            return []

        items = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            authors = entry.get("authors") or []
            author = _author_name(authors[0]) if authors else _author_name(entry.get("author"))
            items.append(
                make_item(
                    title=entry.get("title"),
                    link=entry.get("url") or entry.get("external_url"),
                    content=entry.get("content_html") or entry.get("content_text"),
                    summary=entry.get("summary") or entry.get("content_text"),
                    timestamp=entry.get("date_published") or entry.get("date_modified"),
                    thumbnail=entry.get("image") or entry.get("banner_image"),
                    author=author,
                    item_id=str(entry["id"]) if entry.get("id") is not None else None,
                    tags=entry.get("tags") or [],
                    snippet_limit=ctx.snippet_limit,
                )
            )
        return items


def _locate_entries(data: Any) -> list:
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    for key in _LIST_KEYS:
        value = data.get(key)
        if isinstance(value, list) and value:
            return value
    feed = data.get("feed")
    if isinstance(feed, dict) and isinstance(feed.get("entries"), list):
        return feed["entries"]
    return []


class JsonApiParser(Parser):
    """Best-effort mapping of an arbitrary JSON list of records."""

    name = "json_api"
    priority = 40

    def applicable(self, source: Source) -> bool:
        return source.scheme in ("http", "https")

    async def parse(self, source, ctx) -> list[Item]:
        resp = await ctx.fetch(accept="json")
        entries = [e for e in _locate_entries(load_json(resp)) if isinstance(e, dict)]

        items = []
        for raw in entries:
            title = _text(raw.get("title")) or _text(raw.get("name"))
            link = _text(raw.get("url")) or _text(raw.get("link"))
            raw_id = raw.get("id") or raw.get("guid")
            if not (title or link or raw_id):
                continue
            description = (
                _text(raw.get("summary"))
                or _text(raw.get("content"))
                or _text(raw.get("text"))
                or _text(raw.get("body"))
            )
            tags = raw.get("tags") if isinstance(raw.get("tags"), list) else []
            items.append(
                make_item(
                    title=title,
                    link=link,
                    summary=description,
                    timestamp=(
                        raw.get("date")
                        or raw.get("published_at")
                        or raw.get("updated_at")
                        or raw.get("created_at")
                    ),
                    thumbnail=(
                        _text(raw.get("image"))
                        or _text(raw.get("thumbnail"))
                        or _text(raw.get("media_url"))
                    ),
                    author=_author_name(raw.get("author") or raw.get("user")),
                    item_id=str(raw_id) if raw_id is not None else None,
                    tags=tags,
                    snippet_limit=ctx.snippet_limit,
                )
            )
        return items
