"""Discord channel messages as items.

Sources look like ``discord://<channel_id>`` or
``discord://<guild_id>/<channel_id>``.
"""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

from core.models import Item, Source
from core.normalize import make_item
from feeds.base import Parser

log = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"


def parse_discord_url(url: str) -> tuple[str | None, str | None]:
    """Return ``(guild_id, channel_id)`` from a ``discord://`` source URL."""
    parts = urlsplit(url)
    segments = [s for s in [parts.netloc, *parts.path.split("/")] if s]
    if not segments:
        return None, None
    if len(segments) == 1:
        return None, segments[0]
    return segments[-2], segments[-1]


def _author(msg: dict) -> str:
    author = msg.get("author") or {}
    return author.get("global_name") or author.get("username") or "Unknown"


def _image(msg: dict) -> str | None:
    for attachment in msg.get("attachments") or []:
        if str(attachment.get("content_type") or "").startswith("image/") and attachment.get("url"):
            return attachment["url"]
    for embed in msg.get("embeds") or []:
        for key in ("thumbnail", "image"):
            if isinstance(embed.get(key), dict) and embed[key].get("url"):
                return embed[key]["url"]
    return None


class DiscordParser(Parser):
    name = "discord"
    priority = 12

    def __init__(self, token: str = "", limit: int = 50) -> None:
        self._token = token
        self._limit = limit

    def applicable(self, source: Source) -> bool:
        return source.scheme == "discord"

    async def parse(self, source, ctx) -> list[Item]:
        if not self._token:
            log.warning("Discord source %s skipped: DISCORD_TOKEN is not set", source.url)
            return []
        guild_id, channel_id = parse_discord_url(source.url)
        if not channel_id:
            log.warning("Discord source %s has no channel id", source.url)
            return []

        resp = await ctx.fetch(
            f"{DISCORD_API}/channels/{channel_id}/messages?limit={self._limit}",
            accept="json",
            headers={"Authorization": self._token},
            conditional=False,
        )
        messages = resp.json()
        if not isinstance(messages, list):
            return []

        items = []
        for msg in messages:
            if not isinstance(msg, dict) or not msg.get("id"):
                continue
            content = msg.get("content") or ""
            if content:
                title = content if len(content) <= 80 else content[:80] + "..."
            else:
                title = f"Message from {_author(msg)}"
            guild = msg.get("guild_id") or guild_id or "@me"
            items.append(
                make_item(
                    title=title,
                    link=f"https://discord.com/channels/{guild}/{msg.get('channel_id') or channel_id}/{msg['id']}",
                    summary=content or None,
                    timestamp=msg.get("timestamp"),
                    thumbnail=_image(msg),
                    author=_author(msg),
                    item_id=str(msg["id"]),
                    tags=["discord"],
                    snippet_limit=ctx.snippet_limit,
                )
            )
        return items
