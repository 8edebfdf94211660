from __future__ import annotations

import asyncio
import inspect
import random
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from core.models import Item, Source

if TYPE_CHECKING:
    from feeds.pipeline import FetchContext


class Parser(ABC):
    """One source format. Lower ``priority`` runs earlier."""

    name: str
    priority: int = 50

    def applicable(self, source: Source) -> bool:
        return True

    @abstractmethod
    async def parse(self, source: Source, ctx: FetchContext) -> list[Item]:
        """Return the items found for ``source``; empty when the format does not match."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} priority={self.priority}>"


class FunctionParser(Parser):
    """Wraps a plain callable so it can sit in the pipeline next to built-ins."""

    def __init__(
        self,
        name: str,
        parse: Callable[[Source, FetchContext], Awaitable[list[Item]] | list[Item]],
        *,
        priority: int = 50,
        applicable: Callable[[Source], bool] | None = None,
    ) -> None:
        if not callable(parse):
            raise TypeError(f"parser {name!r}: parse must be callable")
        self.name = name
        self.priority = priority
        self._parse = parse
        self._applicable = applicable

    def applicable(self, source: Source) -> bool:
        if self._applicable is None:
            return True
        return bool(self._applicable(source))

    async def parse(self, source: Source, ctx: FetchContext) -> list[Item]:
        result: Any = self._parse(source, ctx)
        if inspect.isawaitable(result):
            result = await result
        return list(result or [])


class RequestJitter:
    """Small randomized pause before each source fetch.

    Hosts listed in ``slow_hosts`` get the longer base delay.
    """

    def __init__(
        self,
        base: float = 0.5,
        slow: float = 2.0,
        spread: float = 0.5,
        slow_hosts: tuple[str, ...] = ("youtube.com",),
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._base = base
        self._slow = slow
        self._spread = spread
        self._slow_hosts = slow_hosts
        self._rng = rng

    def delay_for(self, source: Source) -> float:
        host = source.host
        slow = any(host == h or host.endswith("." + h) for h in self._slow_hosts)
        return (self._slow if slow else self._base) + self._rng() * self._spread

    async def wait(self, source: Source) -> None:
        delay = self.delay_for(source)
        if delay > 0:
            await asyncio.sleep(delay)
