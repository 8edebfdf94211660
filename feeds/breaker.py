"""Per-host circuit breaker.

A host that keeps failing is put on cooldown; until the cooldown expires
every fetch to it is refused without touching the network. Each further
failure doubles the cooldown up to a ceiling, and a random jitter keeps
destinations that share a host from retrying in lockstep.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable

from core.errors import HostCoolingDown
from core.models import HostState

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CooldownPolicy:
    permission: float = 600.0
    rate_limit: float = 120.0
    gateway: float = 120.0
    server: float = 60.0
    client: float = 300.0
    network: float = 30.0
    ceiling: float = 3600.0
    jitter: float = 1.0

    def base_for(self, status: int | None, retry_after: float | None = None) -> float:
        if status in (401, 403):
            return self.permission
        if status == 429:
            return retry_after if retry_after is not None else self.rate_limit
        if status in (502, 503, 504):
            return self.gateway
        if status is not None and 500 <= status < 600:
            return self.server
        if status is not None and 400 <= status < 500:
            return self.client
        return self.network


def parse_retry_after(value: str | None, *, now: float | None = None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now if now is not None else time.time()
    return max(0.0, when.timestamp() - current)


class HostBreaker:
    def __init__(
        self,
        policy: CooldownPolicy | None = None,
        *,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy or CooldownPolicy()
        self._clock = clock
        self._rng = rng
        self._states: dict[str, HostState] = {}
        self._lock = threading.Lock()

    def check(self, host: str, *, url: str = "") -> None:
        """Raise :class:`HostCoolingDown` if ``host`` may not be contacted yet."""
        with self._lock:
            state = self._states.get(host)
            now = self._clock()
            if state is None or state.cooldown_until <= now:
                return
            remaining = state.cooldown_until - now
            reason = state.last_reason or (str(state.last_status) if state.last_status else None)
        log.warning("Host %s cooling down ~%ds, skipping %s", host, int(remaining) + 1, url or host)
        raise HostCoolingDown(host, remaining, reason, url=url)

    def is_cooling_down(self, host: str) -> bool:
        with self._lock:
            state = self._states.get(host)
            return bool(state and state.cooldown_until > self._clock())

    def record_failure(
        self,
        host: str,
        *,
        status: int | None = None,
        reason: str | None = None,
        retry_after: float | None = None,
    ) -> HostState:
        with self._lock:
            now = self._clock()
            state = self._states.get(host)
            if state is None:
                state = HostState(host=host)
                self._states[host] = state
            state.strike_count += 1

            base = self.policy.base_for(status, retry_after)
            ttl = min(base * 2 ** (state.strike_count - 1), self.policy.ceiling)
            state.cooldown_until = now + ttl + self._rng() * self.policy.jitter
            state.last_status = status
            state.last_reason = reason
            state.last_error_at = now
            snapshot = replace(state)

        log.warning(
            "Cooldown for host %s: %ds (status: %s, reason: %s, strikes: %d)",
            host,
            int(ttl),
            status or "n/a",
            reason or "n/a",
            snapshot.strike_count,
        )
        return snapshot

    def record_success(self, host: str) -> None:
        with self._lock:
            state = self._states.get(host)
            if state is None:
                return
            if state.strike_count:
                log.info("Host %s recovered after %d strikes", host, state.strike_count)
            state.strike_count = 0
            state.cooldown_until = 0.0

    def get(self, host: str) -> HostState | None:
        with self._lock:
            state = self._states.get(host)
            return replace(state) if state else None

    def clear(self, host: str) -> bool:
        with self._lock:
            return self._states.pop(host, None) is not None

    def snapshot(self) -> list[dict]:
        with self._lock:
            now = self._clock()
            rows = []
            for state in self._states.values():
                row = asdict(state)
                row["cooling_down"] = state.cooldown_until > now
                row["remaining_seconds"] = max(0.0, round(state.cooldown_until - now, 1))
                row["cooldown_until"] = (
                    datetime.fromtimestamp(state.cooldown_until, tz=timezone.utc).isoformat()
                    if state.cooldown_until
                    else None
                )
                rows.append(row)
            return rows
