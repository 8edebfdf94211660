"""RSS / Atom / RDF feeds via feedparser, plus the YouTube flavour of Atom."""

from __future__ import annotations

import io
import re
from typing import Any
from urllib.parse import urljoin

import feedparser

from core.models import Item, Source
from core.normalize import make_item
from feeds.base import Parser

_YT_CHANNEL_RE = re.compile(r"^yt:(?:channel:)?(UC[\w-]+)$")
YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={}"


def parse_feed(body: bytes) -> Any:
    # A file-like object keeps feedparser from treating the body as a URL or path.
    # No content-location is passed: feedparser would resolve bare guids against it.
    return feedparser.parse(io.BytesIO(body))


def _first_content(entry: Any) -> str:
    for block in entry.get("content") or []:
        value = block.get("value") if isinstance(block, dict) else None
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _entry_link(entry: Any, base_url: str = "") -> str:
    link = entry.get("link")
    if not (isinstance(link, str) and link.strip()):
        link = ""
        links = entry.get("links") or []
        alternates = [c for c in links if str(c.get("rel") or "alternate").lower() == "alternate"]
        for candidate in alternates + list(links):
            if candidate.get("href"):
                link = candidate["href"]
                break
    link = link.strip()
    if link and base_url:
        link = urljoin(base_url, link)
    return link


def _entry_thumbnail(entry: Any) -> str | None:
    for thumb in entry.get("media_thumbnail") or []:
        if thumb.get("url"):
            return thumb["url"]
    return None


def _entry_enclosure(entry: Any) -> str | None:
    for enc in entry.get("enclosures") or []:
        href = enc.get("href") or enc.get("url")
        if href and str(enc.get("type") or "").startswith("image/"):
            return href
    for media in entry.get("media_content") or []:
        url = media.get("url")
        kind = str(media.get("type") or "")
        if url and (kind.startswith("image/") or media.get("medium") == "image"):
            return url
    return None


def entry_to_item(entry: Any, *, base_url: str = "", snippet_limit: int = 500) -> Item:
    return make_item(
        title=entry.get("title"),
        link=_entry_link(entry, base_url),
        content=_first_content(entry),
        summary=entry.get("summary"),
        timestamp=entry.get("published_parsed") or entry.get("updated_parsed"),
        thumbnail=_entry_thumbnail(entry),
        enclosure=_entry_enclosure(entry),
        author=entry.get("author"),
        item_id=entry.get("id"),
        tags=[t.get("term") for t in entry.get("tags") or [] if t.get("term")],
        snippet_limit=snippet_limit,
    )


def youtube_feed_url(url: str) -> str:
    """Expand ``yt:channel:<id>`` shorthands to the channel's feed URL."""
    match = _YT_CHANNEL_RE.match(url.strip())
    if match:
        return YOUTUBE_FEED_URL.format(match.group(1))
    return url


class YouTubeParser(Parser):
    name = "youtube"
    priority = 10

    def applicable(self, source: Source) -> bool:
        return "youtube.com/feeds/" in source.url or source.url.startswith("yt:")

    async def parse(self, source, ctx) -> list[Item]:
        url = youtube_feed_url(source.url)
        resp = await ctx.fetch(url, accept="xml")
        parsed = parse_feed(resp.body)
        items = []
        for entry in parsed.entries:
            video_id = entry.get("yt_videoid")
            thumbnail = _entry_thumbnail(entry)
            if not thumbnail and video_id:
                thumbnail = f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"
            link = _entry_link(entry, url)
            if not link and video_id:
                link = f"https://www.youtube.com/watch?v={video_id}"
            items.append(
                make_item(
                    title=entry.get("title"),
                    link=link,
                    summary=entry.get("media_description") or entry.get("summary"),
                    timestamp=entry.get("published_parsed") or entry.get("updated_parsed"),
                    thumbnail=thumbnail,
                    author=entry.get("author"),
                    item_id=entry.get("id") or video_id,
                    tags=["youtube"],
                    snippet_limit=ctx.snippet_limit,
                )
            )
        return items


class SyndicationParser(Parser):
    """Well-formed RSS 0.9x/1.0/2.0 and Atom."""

    name = "syndication"
    priority = 20

    def applicable(self, source: Source) -> bool:
        return source.scheme in ("http", "https")

    async def parse(self, source, ctx) -> list[Item]:
        resp = await ctx.fetch(accept="xml")
        parsed = parse_feed(resp.body)
        if not parsed.get("version") or not parsed.entries:
            return []
        return [
            entry_to_item(e, base_url=resp.url, snippet_limit=ctx.snippet_limit)
            for e in parsed.entries
        ]
