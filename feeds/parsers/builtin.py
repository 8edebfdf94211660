from __future__ import annotations

from config.settings import Settings
from feeds.base import Parser
from feeds.parsers.discord import DiscordParser
from feeds.parsers.freshrss import FreshRssParser, fever_api_key
from feeds.parsers.html_meta import HtmlMetaParser
from feeds.parsers.jsonfeed import JsonApiParser, JsonFeedParser
from feeds.parsers.regex_xml import RegexXmlParser
from feeds.parsers.syndication import SyndicationParser, YouTubeParser


def builtin_parsers(cfg: Settings) -> list[Parser]:
    return [
        YouTubeParser(),
        DiscordParser(token=cfg.DISCORD_TOKEN, limit=cfg.DISCORD_MESSAGE_LIMIT),
        FreshRssParser(
            base_url=cfg.FRESHRSS_URL,
            api_key=fever_api_key(cfg.FRESHRSS_API_KEY, cfg.FRESHRSS_USERNAME, cfg.FRESHRSS_PASSWORD),
        ),
        SyndicationParser(),
        JsonFeedParser(),
        JsonApiParser(),
        RegexXmlParser(),
        HtmlMetaParser(),
    ]
