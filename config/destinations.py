"""Loading of the destination (channel) configuration file.

The file is JSON of the form::

    {"channels": [{"Name": "news", "RSS": ["https://..."], "TimeChecker": 10,
                   "RequestSend": 3, "Webhook": "${NEWS_WEBHOOK}", "Thread": "null"}]}

String values written exactly as ``${NAME}`` are taken from the environment,
after ``.env`` has been loaded.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.errors import ConfigError
from core.models import Destination, Source

log = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


class DestinationConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str | None = Field(None, alias="Name")
    sources: list[str] = Field(alias="RSS", min_length=1)
    interval_minutes: float = Field(alias="TimeChecker", gt=0)
    send_limit: int = Field(alias="RequestSend", ge=1)
    webhook: str = Field("", alias="Webhook")
    thread_id: str | None = Field(None, alias="Thread")

    @field_validator("sources")
    @classmethod
    def _strip_sources(cls, value: list[str]) -> list[str]:
        cleaned = [s.strip() for s in value if isinstance(s, str) and s.strip()]
        if not cleaned:
            raise ValueError("at least one source URL is required")
        return cleaned

    @field_validator("thread_id", mode="before")
    @classmethod
    def _null_thread(cls, value: Any) -> Any:
        if value is None:
            return None
        value = str(value).strip()
        return None if value in ("", "null", "None") else value

    def to_destination(self, index: int) -> Destination:
        return Destination(
            index=index,
            name=self.name or f"channel-{index + 1}",
            sources=tuple(Source(url=url, destination_index=index) for url in self.sources),
            interval_minutes=self.interval_minutes,
            send_limit=self.send_limit,
            webhook=self.webhook,
            thread_id=self.thread_id,
        )


class DestinationsFile(BaseModel):
    channels: list[DestinationConfig] = Field(min_length=1)


def resolve_env(value: Any) -> Any:
    """Replace ``${NAME}`` strings (recursively) with environment values."""
    if isinstance(value, str):
        match = _ENV_REF_RE.match(value)
        if match:
            return os.environ.get(match.group(1), "")
        return value
    if isinstance(value, list):
        return [resolve_env(v) for v in value]
    if isinstance(value, dict):
        return {k: resolve_env(v) for k, v in value.items()}
    return value


def load_destinations(path: str | Path, *, env_file: str | Path | None = ".env") -> list[Destination]:
    if env_file and Path(env_file).is_file():
        load_dotenv(env_file, override=False)

    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"destination file not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot read destination file {path}: {exc}") from exc

    try:
        parsed = DestinationsFile.model_validate(resolve_env(raw))
    except ValidationError as exc:
        raise ConfigError(f"invalid destination file {path}: {exc}") from exc

    destinations = [cfg.to_destination(i) for i, cfg in enumerate(parsed.channels)]
    for dest in destinations:
        if not dest.webhook:
            log.warning("Destination %s has no webhook configured", dest.name)
    log.info("Loaded %d destinations from %s", len(destinations), path)
    return destinations
