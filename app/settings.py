"""
Scrobbler configuration.

Read from environment variables (see from_env) the same way the player plugin reads
its key/value settings: missing values fall back to defaults, an out-of-range
threshold is treated as 0, and credentials must be plain ASCII.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from gravifon_client import DEFAULT_URL

DEFAULT_DATA_PATH = os.path.join("~", ".local", "share", "gravifon_scrobbler", "scrobbles.jsonl")


class ConfigurationError(ValueError): ...


def to_ascii(value: str, field: str) -> str:
    """Only the ASCII subset is valid in Gravifon usernames and passwords."""
    if not value.isascii():
        raise ConfigurationError(f"Non-ASCII characters are present in the {field}")
    return value


def validate_url(url: str) -> str:
    parts = urlsplit(url.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"Unusable Gravifon URL: {url!r}")
    return url.strip()


def clamp_threshold(percent) -> float:
    """Convert a 0..100 percentage into a fraction; anything invalid counts as 0."""
    try:
        value = float(percent)
    except (TypeError, ValueError):
        return 0.0
    if not 0.0 <= value <= 100.0:  # also rejects NaN
        return 0.0
    return value / 100.0


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    enabled: bool = False
    url: str = DEFAULT_URL
    username: str = ""
    password: str = ""
    safe_scrobbling: bool = False
    threshold: float = 0.0  # fraction of the track that must be played
    data_path: str = DEFAULT_DATA_PATH
    timeout: float = 10.0
    backoff_floor: float = 1.0
    backoff_ceiling: float = 300.0
    flush_on_stop: bool = True  # persist memory-only scrobbles when stopping
    log_level: str = "INFO"

    def __repr__(self) -> str:
        # Never leak the password into logs
        return (f"Settings(enabled={self.enabled}, url={self.url!r}, username={self.username!r}, "
                f"safe_scrobbling={self.safe_scrobbling}, threshold={self.threshold}, "
                f"data_path={self.data_path!r})")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            enabled=_flag("GRAVIFON_ENABLED"),
            url=os.getenv("GRAVIFON_URL", DEFAULT_URL),
            username=os.getenv("GRAVIFON_USERNAME", ""),
            password=os.getenv("GRAVIFON_PASSWORD", ""),
            safe_scrobbling=_flag("GRAVIFON_SAFE_SCROBBLING"),
            threshold=clamp_threshold(os.getenv("GRAVIFON_THRESHOLD", "0")),
            data_path=os.path.expanduser(os.getenv("SCROBBLE_DATA_PATH", DEFAULT_DATA_PATH)),
            timeout=max(1.0, _float("GRAVIFON_TIMEOUT", 10.0)),
            backoff_floor=max(0.1, _float("GRAVIFON_BACKOFF_FLOOR", 1.0)),
            backoff_ceiling=max(1.0, _float("GRAVIFON_BACKOFF_CEILING", 300.0)),
            flush_on_stop=_flag("GRAVIFON_FLUSH_ON_STOP", "1"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
