"""Tests for the built-in source parsers."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

import pytest

from config.settings import Settings
from core.models import FetchResponse, Source
from feeds.parsers.builtin import builtin_parsers
from feeds.parsers.discord import DiscordParser, parse_discord_url
from feeds.parsers.freshrss import FreshRssParser, fever_api_key
from feeds.parsers.html_meta import HtmlMetaParser
from feeds.parsers.jsonfeed import JsonApiParser, JsonFeedParser
from feeds.parsers.regex_xml import RegexXmlParser, clean_cdata, get_attr, get_tag
from feeds.parsers.syndication import SyndicationParser, YouTubeParser, youtube_feed_url
from feeds.pipeline import FetchContext, ParserPipeline
from helpers import StubClient, json_response

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example</title>
    <link>https://example.com/</link>
    <item>
      <title>First post</title>
      <link>https://example.com/1?utm_source=rss</link>
      <guid>g-1</guid>
      <description>&lt;p&gt;Hello &lt;img src="https://example.com/i.png"&gt;&lt;/p&gt;</description>
      <pubDate>Mon, 01 Jan 2024 12:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second post</title>
      <link>https://example.com/2</link>
      <pubDate>Tue, 02 Jan 2024 12:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

ATOM = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom example</title>
  <id>urn:feed</id>
  <updated>2024-01-03T00:00:00Z</updated>
  <entry>
    <id>urn:entry:1</id>
    <title>Atom entry</title>
    <link rel="alternate" href="https://example.com/a1"/>
    <updated>2024-01-03T00:00:00Z</updated>
    <summary>Short summary</summary>
    <author><name>Ann</name></author>
    <category term="tech"/>
  </entry>
</feed>
"""

YOUTUBE = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015"
      xmlns:media="http://search.yahoo.com/mrss/"
      xmlns="http://www.w3.org/2005/Atom">
  <title>Channel</title>
  <entry>
    <id>yt:video:abc123</id>
    <yt:videoId>abc123</yt:videoId>
    <yt:channelId>UCxyz</yt:channelId>
    <title>Video one</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=abc123"/>
    <author><name>Chan</name></author>
    <published>2024-01-02T10:00:00+00:00</published>
  </entry>
</feed>
"""


def source(url: str) -> Source:
    return Source(url=url, destination_index=0)


def xml_response(url: str, body: bytes) -> FetchResponse:
    return FetchResponse(url=url, status=200, headers={"content-type": "application/xml"}, body=body)


async def run(parser, url: str, client: StubClient):
    src = source(url)
    return await parser.parse(src, FetchContext(client, src))


# ── syndication ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rss_items():
    url = "https://example.com/rss"
    items = await run(SyndicationParser(), url, StubClient({url: xml_response(url, RSS)}))

    assert [i.title for i in items] == ["First post", "Second post"]
    first, second = items
    assert first.id == "g-1"
    assert first.snippet == "Hello"
    assert first.media == "https://example.com/i.png"
    assert first.timestamp == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert first.timestamp_estimated is False
    assert second.id == "https://example.com/2"


@pytest.mark.asyncio
async def test_rss_keeps_bare_guid_and_resolves_relative_links():
    url = "https://blog.example.com/feeds/rss.xml"
    body = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>t</title>
<item><title>Rel</title><link>/posts/7</link><guid isPermaLink="false">post-7</guid></item>
</channel></rss>
"""
    items = await run(SyndicationParser(), url, StubClient({url: xml_response(url, body)}))

    assert items[0].id == "post-7"
    assert items[0].link == "https://blog.example.com/posts/7"


@pytest.mark.asyncio
async def test_atom_items():
    url = "https://example.com/atom"
    items = await run(SyndicationParser(), url, StubClient({url: xml_response(url, ATOM)}))

    assert len(items) == 1
    entry = items[0]
    assert entry.id == "urn:entry:1"
    assert entry.link == "https://example.com/a1"
    assert entry.author == "Ann"
    assert entry.tags == frozenset({"tech"})
    assert entry.timestamp == datetime(2024, 1, 3, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_syndication_ignores_non_feed_bodies():
    url = "https://example.com/api"
    items = await run(SyndicationParser(), url, StubClient({url: json_response(url, {"a": 1})}))
    assert items == []


def test_youtube_shorthand_expands_to_feed_url():
    assert youtube_feed_url("yt:channel:UCabc-123") == (
        "https://www.youtube.com/feeds/videos.xml?channel_id=UCabc-123"
    )
    assert youtube_feed_url("https://example.com/x") == "https://example.com/x"


@pytest.mark.asyncio
async def test_youtube_items_get_thumbnail_fallback():
    feed_url = youtube_feed_url("yt:channel:UCxyz")
    client = StubClient({feed_url: xml_response(feed_url, YOUTUBE)})
    parser = YouTubeParser()

    assert parser.applicable(source("yt:channel:UCxyz"))
    assert not parser.applicable(source("https://example.com/rss"))

    items = await run(parser, "yt:channel:UCxyz", client)

    assert client.calls == [feed_url]
    assert len(items) == 1
    video = items[0]
    assert video.id == "yt:video:abc123"
    assert video.link == "https://www.youtube.com/watch?v=abc123"
    assert video.media == "https://i.ytimg.com/vi/abc123/hqdefault.jpg"
    assert video.author == "Chan"
    assert "youtube" in video.tags


# ── JSON ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_json_feed():
    url = "https://example.com/feed.json"
    data = {
        "version": "https://jsonfeed.org/version/1.1",
        "title": "J",
        "items": [
            {
                "id": "1",
                "url": "https://example.com/j1",
                "title": "J one",
                "content_html": "<p>Body</p>",
                "date_published": "2024-01-01T00:00:00Z",
                "authors": [{"name": "Jo"}],
                "tags": ["x"],
            }
        ],
    }
    items = await run(JsonFeedParser(), url, StubClient({url: json_response(url, data)}))

    assert len(items) == 1
    assert items[0].id == "1"
    assert items[0].snippet == "Body"
    assert items[0].author == "Jo"
    assert items[0].tags == frozenset({"x"})


@pytest.mark.asyncio
async def test_json_feed_requires_version():
    url = "https://example.com/feed.json"
    data = {"items": [{"id": "1", "title": "x"}]}
    assert await run(JsonFeedParser(), url, StubClient({url: json_response(url, data)})) == []


@pytest.mark.asyncio
async def test_json_api_records():
    url = "https://api.example.com/posts"
    data = {
        "data": [
            {
                "id": 7,
                "name": "Widget",
                "link": "https://example.com/w",
                "body": "Some text",
                "created_at": 1704110400,
                "user": {"username": "u1"},
            },
            {"unrelated": True},
        ]
    }
    items = await run(JsonApiParser(), url, StubClient({url: json_response(url, data)}))

    assert len(items) == 1
    record = items[0]
    assert record.title == "Widget"
    assert record.id == "7"
    assert record.author == "u1"
    assert record.snippet == "Some text"
    assert record.timestamp == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_json_api_ignores_xml():
    url = "https://example.com/rss"
    assert await run(JsonApiParser(), url, StubClient({url: xml_response(url, RSS)})) == []


# ── regex XML ────────────────────────────────────────────────────────


def test_regex_helpers():
    block = '<title><![CDATA[ Hi ]]></title><link href="https://example.com/x"/>'
    assert clean_cdata("<![CDATA[ a ]]>") == "a"
    assert get_tag(block, "title") == "Hi"
    assert get_tag(block, "missing") == ""
    assert get_attr(block, "link", "href") == "https://example.com/x"


@pytest.mark.asyncio
async def test_regex_xml_handles_broken_rss():
    url = "https://broken.example.com/rss"
    body = (
        b"<rss><channel><item><title><![CDATA[Broken & bold]]></title>"
        b"<link>https://broken.example.com/r1</link>"
        b"<description><![CDATA[<b>x</b> & y]]></description>"
        b'<enclosure url="https://broken.example.com/e.jpg" type="image/jpeg"/>'
        b"<pubDate>Mon, 01 Jan 2024 12:00:00 GMT</pubDate>"
        b"</item><item><title>No close"
    )
    items = await run(RegexXmlParser(), url, StubClient({url: xml_response(url, body)}))

    assert len(items) == 1
    assert items[0].title == "Broken & bold"
    assert items[0].link == "https://broken.example.com/r1"
    assert items[0].media == "https://broken.example.com/e.jpg"
    assert items[0].timestamp == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_regex_xml_reads_atom_entries():
    url = "https://example.com/atom"
    items = await run(RegexXmlParser(), url, StubClient({url: xml_response(url, ATOM)}))

    assert len(items) == 1
    assert items[0].link == "https://example.com/a1"
    assert items[0].id == "urn:entry:1"


# ── HTML ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_html_page_becomes_one_item():
    url = "https://example.com/page"
    body = b"""<!doctype html><html><head>
      <title>Fallback title</title>
      <meta property="og:title" content="OG Title">
      <meta property="og:description" content="Page description">
      <meta property="og:image" content="/img/card.png">
      <meta property="article:published_time" content="2024-01-01T00:00:00Z">
    </head><body><p>hi</p></body></html>"""
    resp = FetchResponse(url=url, status=200, headers={"content-type": "text/html"}, body=body)
    items = await run(HtmlMetaParser(), url, StubClient({url: resp}))

    assert len(items) == 1
    page = items[0]
    assert page.title == "OG Title"
    assert page.id == url
    assert page.snippet == "Page description"
    assert page.media == "https://example.com/img/card.png"
    assert page.timestamp_estimated is False


@pytest.mark.asyncio
async def test_html_parser_skips_non_html():
    url = "https://example.com/data"
    assert await run(HtmlMetaParser(), url, StubClient({url: json_response(url, [])})) == []


# ── Discord ──────────────────────────────────────────────────────────


def test_parse_discord_url():
    assert parse_discord_url("discord://111/222") == ("111", "222")
    assert parse_discord_url("discord://222") == (None, "222")
    assert parse_discord_url("discord://") == (None, None)


@pytest.mark.asyncio
async def test_discord_messages():
    api = "https://discord.com/api/v10/channels/222/messages?limit=2"
    messages = [
        {
            "id": "9",
            "channel_id": "222",
            "content": "Hello world",
            "timestamp": "2024-01-01T00:00:00+00:00",
            "author": {"username": "bob"},
            "attachments": [{"url": "https://cdn.example.com/a.png", "content_type": "image/png"}],
            "embeds": [],
        },
        {
            "id": "8",
            "content": "",
            "author": {"global_name": "Alice", "username": "alice"},
            "embeds": [{"thumbnail": {"url": "https://cdn.example.com/t.png"}}],
        },
    ]
    client = StubClient({api: json_response(api, messages)})
    items = await run(DiscordParser(token="secret", limit=2), "discord://111/222", client)

    assert client.calls == [api]
    assert client.kwargs[0]["headers"] == {"Authorization": "secret"}
    assert client.kwargs[0]["conditional"] is False

    first, second = items
    assert first.title == "Hello world"
    assert first.id == "9"
    assert first.link == "https://discord.com/channels/111/222/9"
    assert first.media == "https://cdn.example.com/a.png"
    assert second.title == "Message from Alice"
    assert second.media == "https://cdn.example.com/t.png"
    assert "discord" in second.tags


@pytest.mark.asyncio
async def test_discord_without_token_does_nothing():
    client = StubClient()
    assert await run(DiscordParser(token=""), "discord://222", client) == []
    assert client.calls == []


# ── FreshRSS ─────────────────────────────────────────────────────────

FEVER = "https://rss.example.com/api/fever.php?api"
FEEDS = {"auth": 1, "feeds": [{"id": 3, "title": "Blog"}]}
ENTRIES = {
    "auth": 1,
    "items": [
        {"id": 10, "feed_id": 3, "title": "Old", "url": "https://blog.example.com/old",
         "html": "<p>o</p>", "created_on_time": 1704000000},
        {"id": 11, "feed_id": 3, "title": "New", "url": "https://blog.example.com/new",
         "html": "<p>n</p>", "created_on_time": 1704100000},
    ],
}


def test_fever_api_key():
    assert fever_api_key("explicit", "u", "p") == "explicit"
    assert fever_api_key("", "u", "p") == hashlib.md5(b"u:p").hexdigest()
    assert fever_api_key() == ""


@pytest.mark.asyncio
async def test_freshrss_all_items_newest_first():
    client = StubClient({
        f"{FEVER}&feeds": json_response(f"{FEVER}&feeds", FEEDS),
        f"{FEVER}&items": json_response(f"{FEVER}&items", ENTRIES),
    })
    parser = FreshRssParser(base_url="https://rss.example.com/", api_key="k")
    items = await run(parser, "freshrss://all", client)

    assert [i.title for i in items] == ["New", "Old"]
    assert items[0].id == "freshrss-11"
    assert items[0].author == "Blog"
    assert client.kwargs[0]["method"] == "POST"
    assert client.kwargs[0]["data"] == {"api_key": "k"}


@pytest.mark.asyncio
async def test_freshrss_group_resolves_feed_ids():
    groups = {"auth": 1, "feeds_groups": [{"group_id": 5, "feed_ids": "3,4"}]}
    client = StubClient({
        f"{FEVER}&feeds": json_response(f"{FEVER}&feeds", FEEDS),
        f"{FEVER}&groups": json_response(f"{FEVER}&groups", groups),
        f"{FEVER}&items&feed_ids=3,4": json_response(f"{FEVER}&items&feed_ids=3,4", ENTRIES),
    })
    parser = FreshRssParser(base_url="https://rss.example.com", api_key="k")
    items = await run(parser, "freshrss://group/5", client)

    assert len(items) == 2
    assert client.calls[-1] == f"{FEVER}&items&feed_ids=3,4"


@pytest.mark.asyncio
async def test_freshrss_auth_failure_raises():
    client = StubClient({f"{FEVER}&feeds": json_response(f"{FEVER}&feeds", {"auth": 0})})
    parser = FreshRssParser(base_url="https://rss.example.com", api_key="wrong")
    with pytest.raises(ValueError):
        await run(parser, "freshrss://all", client)


# ── built-in ordering ────────────────────────────────────────────────


def test_builtin_parser_order():
    pipeline = ParserPipeline(builtin_parsers(Settings()), StubClient())
    assert [p.name for p in pipeline.parsers] == [
        "youtube",
        "discord",
        "freshrss",
        "syndication",
        "jsonfeed",
        "json_api",
        "regex_xml",
        "html_meta",
    ]


@pytest.mark.asyncio
async def test_pipeline_falls_through_to_json_api():
    url = "https://api.example.com/latest"
    data = {"posts": [{"id": "a", "title": "A", "url": "https://example.com/a"}]}
    client = StubClient({url: json_response(url, data)})
    result = await ParserPipeline(builtin_parsers(Settings()), client).resolve_detailed(source(url))

    assert result.parser == "json_api"
    assert [i.id for i in result.items] == ["a"]
    assert client.calls == [url]
