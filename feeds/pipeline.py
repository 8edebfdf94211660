"""Ordered fallback over parsers.

The format of a source is not reliably knowable from its URL, so parsers
run from strict (syndication XML, chat APIs) to heuristic (regex XML, HTML
metadata) and the first one that yields items wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from core.errors import FetchError, NotModified, ParseFailed
from core.models import FetchResponse, Item, Source
from feeds.base import FunctionParser, Parser
from feeds.client import FetchClient

log = logging.getLogger(__name__)


class FetchContext:
    """Per-resolution view of the fetch client that reuses responses.

    A body fetched by one parser is handed to later parsers instead of
    hitting the network again; fetch errors are remembered the same way.
    """

    def __init__(self, client: FetchClient, source: Source, *, snippet_limit: int = 500) -> None:
        self.client = client
        self.source = source
        self.snippet_limit = snippet_limit
        self._responses: dict[tuple, FetchResponse | BaseException] = {}
        self.fetched_urls: list[str] = []

    async def fetch(
        self,
        url: str | None = None,
        *,
        accept: str | None = "auto",
        headers: Mapping[str, str] | None = None,
        method: str = "GET",
        data: Mapping[str, str] | None = None,
        conditional: bool = True,
    ) -> FetchResponse:
        url = url or self.source.url
        key = (method.upper(), url, tuple(sorted((data or {}).items())))
        cached = self._responses.get(key)
        if cached is None:
            self.fetched_urls.append(url)
            try:
                cached = await self.client.fetch(
                    url,
                    accept=accept,
                    headers=headers,
                    method=method,
                    data=data,
                    conditional=conditional,
                )
            except FetchError as exc:
                self._responses[key] = exc
                raise
            self._responses[key] = cached
        if isinstance(cached, BaseException):
            raise cached
        if cached.not_modified:
            raise NotModified(url)
        return cached


@dataclass
class PipelineResult:
    items: list[Item] = field(default_factory=list)
    parser: str | None = None
    not_modified: bool = False
    fetch_error: FetchError | None = None
    errors: list[ParseFailed] = field(default_factory=list)
    fetched_urls: list[str] = field(default_factory=list)


class ParserRegistry:
    """Collects extra parsers supplied at startup (e.g. by plugins)."""

    def __init__(self) -> None:
        self._parsers: list[Parser] = []

    def register(self, parser: Parser | Mapping[str, Any]) -> Parser:
        if isinstance(parser, Parser):
            registered = parser
        elif isinstance(parser, Mapping):
            if not callable(parser.get("parse")):
                raise TypeError("register: 'parse' must be callable")
            registered = FunctionParser(
                str(parser.get("name") or f"plugin-{len(self._parsers) + 1}"),
                parser["parse"],
                priority=int(parser.get("priority", 50)),
                applicable=parser.get("applicable"),
            )
        else:
            raise TypeError(f"cannot register {parser!r} as a parser")
        self._parsers.append(registered)
        log.info("Registered parser %s (priority %d)", registered.name, registered.priority)
        return registered

    @property
    def parsers(self) -> list[Parser]:
        return list(self._parsers)


class ParserPipeline:
    def __init__(
        self,
        parsers: Iterable[Parser],
        client: FetchClient,
        *,
        extra: Iterable[Parser] = (),
        snippet_limit: int = 500,
    ) -> None:
        # Extras come first so they win ties on priority; sorted() is stable.
        ordered = list(extra) + list(parsers)
        self.parsers: list[Parser] = sorted(ordered, key=lambda p: p.priority)
        self.client = client
        self.snippet_limit = snippet_limit

    async def resolve(self, source: Source) -> list[Item]:
        return (await self.resolve_detailed(source)).items

    async def resolve_detailed(self, source: Source) -> PipelineResult:
        result = PipelineResult()
        ctx = FetchContext(self.client, source, snippet_limit=self.snippet_limit)
        result.fetched_urls = ctx.fetched_urls

        for parser in self.parsers:
            try:
                if not parser.applicable(source):
                    continue
                items = await parser.parse(source, ctx)
            except NotModified:
                result.not_modified = True
                log.debug("%s not modified, skipping parsers", source.url)
                return result
            except FetchError as exc:
                result.fetch_error = exc
                return result
            except Exception as exc:
                failure = ParseFailed(parser.name, source.url, exc)
                result.errors.append(failure)
                log.warning("Parser %s failed for %s: %s", parser.name, source.url, exc)
                continue

            if items:
                result.items = list(items)
                result.parser = parser.name
                log.info("Parser %s: %d items for %s", parser.name, len(items), source.url)
                return result
            log.debug("Parser %s found nothing for %s", parser.name, source.url)

        log.info("No parser produced items for %s", source.url)
        return result
