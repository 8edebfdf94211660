from __future__ import annotations

import logging
from typing import Protocol

import httpx

from core.errors import DeliveryFailed
from core.models import Destination, Item

log = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


class Notifier(Protocol):
    async def deliver(self, destination: Destination, item: Item) -> None:
        """Send one item; raise :class:`DeliveryFailed` if it was not accepted."""
        ...


def format_message(item: Item) -> str:
    text = f"**{item.title}**\n{item.link}" if item.link else f"**{item.title}**"
    return text[:MAX_MESSAGE_LENGTH]


class WebhookNotifier:
    """Posts a plain-text message per item to the destination's chat webhook."""

    def __init__(self, *, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def deliver(self, destination: Destination, item: Item) -> None:
        if not destination.webhook:
            raise DeliveryFailed(f"{destination.name} has no webhook", item_id=item.id)
        params = {"thread_id": destination.thread_id} if destination.thread_id else None
        payload = {"content": format_message(item)}
        try:
            resp = await self._client.post(destination.webhook, params=params, json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryFailed(f"webhook error for {item.id}: {exc}", item_id=item.id) from exc
        if resp.status_code >= 300:
            raise DeliveryFailed(
                f"webhook rejected {item.id} with HTTP {resp.status_code}",
                item_id=item.id,
                status=resp.status_code,
            )
        log.debug("Delivered %s to %s", item.id, destination.name)


class LogNotifier:
    """Dry-run notifier: logs what would have been sent."""

    async def deliver(self, destination: Destination, item: Item) -> None:
        log.info("[dry-run] %s <- %s (%s)", destination.name, item.title, item.link)
