from __future__ import annotations

from typing import Callable

import httpx
import pytest

from feeds.breaker import CooldownPolicy, HostBreaker
from feeds.client import FetchClient
from feeds.conditional import ConditionalCache
from helpers import USER_AGENTS, no_sleep


@pytest.fixture
def breaker() -> HostBreaker:
    return HostBreaker(CooldownPolicy(), rng=lambda: 0.0)


@pytest.fixture
def make_client(breaker):
    """Build a FetchClient whose network is the given MockTransport handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], *, conditional=None, attempts=4):
        client = FetchClient(
            breaker=breaker,
            conditional=conditional if conditional is not None else ConditionalCache(),
            user_agents=USER_AGENTS,
            max_attempts=attempts,
            transport=httpx.MockTransport(handler),
            sleep=no_sleep,
        )
        return client

    return _make
