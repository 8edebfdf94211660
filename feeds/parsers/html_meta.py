from __future__ import annotations

from urllib.parse import urljoin

from bs4 import BeautifulSoup

from core.models import FetchResponse, Item, Source
from core.normalize import make_item
from feeds.base import Parser


def _looks_like_html(resp: FetchResponse) -> bool:
    if "html" in resp.content_type:
        return True
    head = resp.body[:2048].lower()
    return b"<html" in head or b"<!doctype html" in head


def _meta(soup: BeautifulSoup, **attrs) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    return content.strip() if isinstance(content, str) and content.strip() else None


class HtmlMetaParser(Parser):
    """Turns a plain web page into a single item from its OpenGraph metadata."""

    name = "html_meta"
    priority = 90

    def applicable(self, source: Source) -> bool:
        return source.scheme in ("http", "https")

    async def parse(self, source, ctx) -> list[Item]:
        resp = await ctx.fetch(accept="html")
        if not _looks_like_html(resp):
            return []

        soup = BeautifulSoup(resp.body, "html.parser")
        title = _meta(soup, property="og:title")
        if not title and soup.title and soup.title.string:
            title = soup.title.string.strip()
        url = _meta(soup, property="og:url") or source.url
        if not title:
            return []

        image = _meta(soup, property="og:image")
        if not image:
            icon = soup.find("link", rel=lambda rel: rel and "icon" in rel)
            image = icon.get("href") if icon else None

        return [
            make_item(
                title=title,
                link=urljoin(resp.url, url),
                summary=_meta(soup, property="og:description") or _meta(soup, name="description"),
                timestamp=_meta(soup, property="article:published_time"),
                thumbnail=urljoin(resp.url, image) if image else None,
                author=_meta(soup, name="author"),
                snippet_limit=ctx.snippet_limit,
            )
        ]
