"""Last-resort XML scraping for feeds too broken for a real parser."""

from __future__ import annotations

import re
from functools import lru_cache

from core.models import Item, Source
from core.normalize import make_item
from feeds.base import Parser

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_ITEM_RE = re.compile(r"<item\b[^>]*>(.*?)</item>", re.DOTALL | re.IGNORECASE)
_ENTRY_RE = re.compile(r"<entry\b[^>]*>(.*?)</entry>", re.DOTALL | re.IGNORECASE)


def clean_cdata(value: str) -> str:
    return _CDATA_RE.sub(r"\1", value or "").strip()


@lru_cache(maxsize=64)
def _tag_re(tag: str) -> re.Pattern:
    return re.compile(rf"<{re.escape(tag)}(?:\s[^>]*)?>(.*?)</{re.escape(tag)}>", re.DOTALL | re.IGNORECASE)


@lru_cache(maxsize=64)
def _attr_re(tag: str, attr: str) -> re.Pattern:
    return re.compile(
        rf"<{re.escape(tag)}\b[^>]*?\s{re.escape(attr)}=[\"']([^\"']+)[\"'][^>]*>",
        re.IGNORECASE,
    )


def get_tag(block: str, tag: str) -> str:
    match = _tag_re(tag).search(block)
    return clean_cdata(match.group(1)) if match else ""


def get_attr(block: str, tag: str, attr: str) -> str | None:
    match = _attr_re(tag, attr).search(block)
    return match.group(1) if match else None


class RegexXmlParser(Parser):
    name = "regex_xml"
    priority = 60

    def applicable(self, source: Source) -> bool:
        return source.scheme in ("http", "https")

    async def parse(self, source, ctx) -> list[Item]:
        resp = await ctx.fetch(accept="xml")
        data = resp.text
        if not data:
            return []

        blocks = _ITEM_RE.findall(data) or _ENTRY_RE.findall(data)
        items = []
        for block in blocks:
            link = get_tag(block, "link") or get_attr(block, "link", "href") or ""
            description = (
                get_tag(block, "content:encoded")
                or get_tag(block, "description")
                or get_tag(block, "summary")
                or get_tag(block, "content")
            )
            enclosure = (
                get_attr(block, "enclosure", "url")
                or get_attr(block, "media:content", "url")
            )
            items.append(
                make_item(
                    title=get_tag(block, "title"),
                    link=link,
                    content=description,
                    timestamp=(
                        get_tag(block, "pubDate")
                        or get_tag(block, "published")
                        or get_tag(block, "updated")
                        or get_tag(block, "dc:date")
                        or None
                    ),
                    thumbnail=get_attr(block, "media:thumbnail", "url"),
                    enclosure=enclosure,
                    author=get_tag(block, "dc:creator") or get_tag(block, "author") or None,
                    item_id=get_tag(block, "guid") or get_tag(block, "id") or None,
                    snippet_limit=ctx.snippet_limit,
                )
            )
        return items
