"""Tests for configuration parsing and validation."""

from __future__ import annotations

import math

import pytest

from gravifon_client import DEFAULT_URL
from settings import ConfigurationError, Settings, clamp_threshold, to_ascii, validate_url


@pytest.mark.parametrize(
    "percent,expected",
    [(0, 0.0), (50, 0.5), (100, 1.0), ("25", 0.25), (-1, 0.0), (100.5, 0.0),
     ("abc", 0.0), (None, 0.0), (math.nan, 0.0)],
)
def test_clamp_threshold(percent, expected) -> None:
    assert clamp_threshold(percent) == expected


def test_to_ascii() -> None:
    assert to_ascii("user", "username") == "user"
    with pytest.raises(ConfigurationError, match="username"):
        to_ascii("Dźmitry", "username")


@pytest.mark.parametrize("url", ["http://api.gravifon.org/v1", "https://gravifon.test"])
def test_validate_url_accepts_http(url) -> None:
    assert validate_url(url) == url


@pytest.mark.parametrize("url", ["", "api.gravifon.org", "ftp://gravifon.test", "http://"])
def test_validate_url_rejects(url) -> None:
    with pytest.raises(ConfigurationError):
        validate_url(url)


def test_defaults(monkeypatch) -> None:
    for name in ("GRAVIFON_ENABLED", "GRAVIFON_URL", "GRAVIFON_USERNAME", "GRAVIFON_PASSWORD",
                 "GRAVIFON_SAFE_SCROBBLING", "GRAVIFON_THRESHOLD", "GRAVIFON_TIMEOUT",
                 "GRAVIFON_FLUSH_ON_STOP", "SCROBBLE_DATA_PATH"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.enabled is False
    assert settings.url == DEFAULT_URL == "http://api.gravifon.org/v1"
    assert settings.safe_scrobbling is False
    assert settings.threshold == 0.0
    assert settings.flush_on_stop is True
    assert not settings.data_path.startswith("~")


def test_from_env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("GRAVIFON_ENABLED", "1")
    monkeypatch.setenv("GRAVIFON_USERNAME", "user")
    monkeypatch.setenv("GRAVIFON_PASSWORD", "secret")
    monkeypatch.setenv("GRAVIFON_SAFE_SCROBBLING", "true")
    monkeypatch.setenv("GRAVIFON_THRESHOLD", "250")
    monkeypatch.setenv("GRAVIFON_TIMEOUT", "4")
    monkeypatch.setenv("SCROBBLE_DATA_PATH", str(tmp_path / "q.jsonl"))
    settings = Settings.from_env()
    assert settings.enabled and settings.safe_scrobbling
    assert settings.threshold == 0.0
    assert settings.timeout == 4.0
    assert settings.data_path == str(tmp_path / "q.jsonl")


def test_bad_number_is_a_configuration_error(monkeypatch) -> None:
    monkeypatch.setenv("GRAVIFON_TIMEOUT", "soon")
    with pytest.raises(ConfigurationError):
        Settings.from_env()


def test_repr_hides_password() -> None:
    assert "hunter2" not in repr(Settings(password="hunter2"))
