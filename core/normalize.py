"""Shaping of raw source records into canonical :class:`Item` values.

Everything here is pure: no network, no persistence. Parsers hand over
whatever their native format offers and ``make_item`` picks the best
available title, snippet, image and timestamp.
"""

from __future__ import annotations

import calendar
import hashlib
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from html import unescape
from typing import Any, Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from core.models import Item

DEFAULT_SNIPPET_LENGTH = 500
UNTITLED = "(untitled)"

_WHITESPACE_RE = re.compile(r"\s+")
_NUMERIC_RE = re.compile(r"-?\d+(\.\d+)?")
_IMG_SRC_RE = re.compile(r"<img\s+(?:[^>]*?\s+)?src=([\"'])(.*?)\1", re.IGNORECASE)

_TRACKING_PARAMS = frozenset(
    {
        "fbclid",
        "gclid",
        "dclid",
        "yclid",
        "mc_cid",
        "mc_eid",
        "igshid",
        "_hsenc",
        "_hsmi",
        "ref_src",
    }
)


# ── text ─────────────────────────────────────────────────────────────


def strip_markup(value: str | None) -> str:
    """Plain text of an HTML fragment with whitespace collapsed."""
    if not value:
        return ""
    if "<" in value:
        text = BeautifulSoup(value, "html.parser").get_text(" ")
    else:
        text = unescape(value)
    return _WHITESPACE_RE.sub(" ", text).strip()


def bound_snippet(value: str, limit: int = DEFAULT_SNIPPET_LENGTH) -> str:
    value = value.strip()
    if len(value) <= limit:
        return value
    return value[: limit - 1].rstrip() + "…"


def first_inline_image(html: str | None) -> str | None:
    if not html:
        return None
    match = _IMG_SRC_RE.search(html)
    if match and match.group(2):
        return unescape(match.group(2))
    return None


# ── identity ─────────────────────────────────────────────────────────


def _is_tracking(param: str) -> bool:
    name = param.lower()
    return name.startswith("utm_") or name in _TRACKING_PARAMS


def normalize_link(url: str | None) -> str:
    """Canonical form of a link: no fragment, no tracking parameters."""
    if not url:
        return ""
    url = url.strip()
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url.split("#", 1)[0]
    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking(k)
    ]
    return urlunsplit(
        (
            parts.scheme.lower(),
            parts.netloc.lower(),
            parts.path or "/",
            urlencode(query, doseq=True),
            "",
        )
    )


# ── time ─────────────────────────────────────────────────────────────


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Best-effort conversion of RSS/Atom/ISO/unix dates to aware UTC."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, time.struct_time):
        try:
            return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, (int, float)):
        # Millisecond epochs are 13 digits; second epochs are 10.
        seconds = value / 1000.0 if abs(value) >= 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if _NUMERIC_RE.fullmatch(text):
        return parse_timestamp(float(text))
    try:
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        return _as_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        return None


# ── item ─────────────────────────────────────────────────────────────


def make_item(
    *,
    title: str | None,
    link: str | None,
    content: str | None = None,
    summary: str | None = None,
    timestamp: Any = None,
    thumbnail: str | None = None,
    enclosure: str | None = None,
    author: str | None = None,
    item_id: str | None = None,
    tags: Iterable[str] = (),
    snippet_limit: int = DEFAULT_SNIPPET_LENGTH,
    now: datetime | None = None,
) -> Item:
    clean_title = strip_markup(title) or UNTITLED
    link = (link or "").strip()

    snippet = strip_markup(summary) or strip_markup(content)

    media = (
        thumbnail
        or enclosure
        or first_inline_image(content)
        or first_inline_image(summary)
        or None
    )

    parsed = parse_timestamp(timestamp)
    estimated = parsed is None
    if parsed is None:
        parsed = now or datetime.now(timezone.utc)

    identifier = (item_id or "").strip() or normalize_link(link)
    if not identifier:
        identifier = hashlib.sha1(clean_title.encode("utf-8")).hexdigest()[:16]

    return Item(
        title=clean_title,
        link=link,
        snippet=bound_snippet(snippet, snippet_limit),
        id=identifier,
        timestamp=parsed,
        timestamp_estimated=estimated,
        media=media,
        author=(author or "").strip() or None,
        tags=frozenset(t.strip() for t in tags if isinstance(t, str) and t.strip()),
    )
