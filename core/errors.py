from __future__ import annotations


class FeedError(Exception):
    """Base class for all feedrelay errors."""


class FetchError(FeedError):
    """A fetch did not produce a usable response."""

    def __init__(self, message: str, *, url: str = "", host: str = "") -> None:
        super().__init__(message)
        self.url = url
        self.host = host


class HostCoolingDown(FetchError):
    """The host is inside its cooldown window; no request was made."""

    def __init__(self, host: str, remaining: float, reason: str | None = None, *, url: str = "") -> None:
        super().__init__(
            f"{host} cooling down for ~{int(remaining) + 1}s ({reason or 'n/a'})",
            url=url,
            host=host,
        )
        self.remaining = remaining
        self.reason = reason


class FetchFailed(FetchError):
    """All identity-rotation attempts failed, or the request was rejected."""

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        host: str = "",
        status: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, url=url, host=host)
        self.status = status
        self.reason = reason


class NotModified(FeedError):
    """The source answered 304; there is nothing new to parse."""

    def __init__(self, url: str) -> None:
        super().__init__(f"{url} not modified")
        self.url = url


class ParseFailed(FeedError):
    def __init__(self, parser: str, url: str, cause: BaseException | None = None) -> None:
        super().__init__(f"{parser} failed on {url}: {cause}")
        self.parser = parser
        self.url = url
        self.cause = cause


class DeliveryFailed(FeedError):
    def __init__(self, message: str, *, item_id: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.item_id = item_id
        self.status = status


class CacheLoadError(FeedError):
    """The persisted cache could not be opened, even after recovery."""


class ConfigError(FeedError):
    """Destination configuration is missing or invalid."""
