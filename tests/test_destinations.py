"""Tests for loading the destination configuration file."""

from __future__ import annotations

import json

import pytest

from config.destinations import load_destinations, resolve_env
from core.errors import ConfigError


def write_config(tmp_path, channels) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"channels": channels}))
    return str(path)


def test_load_destinations(tmp_path, monkeypatch):
    monkeypatch.setenv("NEWS_WEBHOOK", "https://hooks.example.com/news")
    path = write_config(tmp_path, [
        {
            "Name": "news",
            "RSS": [" https://example.com/rss ", "", "discord://1/2"],
            "TimeChecker": 10,
            "RequestSend": 3,
            "Webhook": "${NEWS_WEBHOOK}",
            "Thread": "null",
        },
        {"RSS": ["https://example.org/feed"], "TimeChecker": 0.5, "RequestSend": 1, "Thread": "42"},
    ])

    first, second = load_destinations(path, env_file=None)

    assert first.index == 0
    assert first.name == "news"
    assert [s.url for s in first.sources] == ["https://example.com/rss", "discord://1/2"]
    assert all(s.destination_index == 0 for s in first.sources)
    assert first.webhook == "https://hooks.example.com/news"
    assert first.thread_id is None
    assert first.interval_seconds == 600

    assert second.name == "channel-2"
    assert second.webhook == ""
    assert second.thread_id == "42"
    assert second.sources[0].key == (1, "https://example.org/feed")


def test_env_file_is_loaded(tmp_path, monkeypatch):
    # Registers FEED_HOOK with monkeypatch so the value loaded from .env is undone.
    monkeypatch.setenv("FEED_HOOK", "placeholder")
    monkeypatch.delenv("FEED_HOOK")
    env_file = tmp_path / ".env"
    env_file.write_text("FEED_HOOK=https://hooks.example.com/from-env\n")
    path = write_config(tmp_path, [
        {"RSS": ["https://example.com/rss"], "TimeChecker": 5, "RequestSend": 1, "Webhook": "${FEED_HOOK}"},
    ])

    (dest,) = load_destinations(path, env_file=env_file)
    assert dest.webhook == "https://hooks.example.com/from-env"


@pytest.mark.parametrize(
    "channel",
    [
        {"RSS": [], "TimeChecker": 5, "RequestSend": 1},
        {"RSS": ["  "], "TimeChecker": 5, "RequestSend": 1},
        {"RSS": ["https://example.com"], "TimeChecker": 0, "RequestSend": 1},
        {"RSS": ["https://example.com"], "TimeChecker": 5, "RequestSend": 0},
        {"TimeChecker": 5, "RequestSend": 1},
    ],
)
def test_invalid_channels_are_rejected(tmp_path, channel):
    with pytest.raises(ConfigError):
        load_destinations(write_config(tmp_path, [channel]), env_file=None)


def test_missing_and_malformed_files(tmp_path):
    with pytest.raises(ConfigError):
        load_destinations(tmp_path / "nope.json", env_file=None)

    broken = tmp_path / "broken.json"
    broken.write_text("{")
    with pytest.raises(ConfigError):
        load_destinations(broken, env_file=None)

    with pytest.raises(ConfigError):
        load_destinations(write_config(tmp_path, []), env_file=None)


def test_resolve_env_only_replaces_whole_values(monkeypatch):
    monkeypatch.setenv("TOKEN", "abc")
    assert resolve_env({"a": "${TOKEN}", "b": ["${TOKEN}", "x-${TOKEN}"], "c": 3}) == {
        "a": "abc",
        "b": ["abc", "x-${TOKEN}"],
        "c": 3,
    }
    monkeypatch.delenv("MISSING_VAR", raising=False)
    assert resolve_env("${MISSING_VAR}") == ""
