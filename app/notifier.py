"""
Webhook alerts for problems the user has to fix (e.g. rejected credentials).

- POSTs a JSON body to NOTIFY_WEBHOOK_URL.
- Only levels at or above NOTIFY_MIN_LEVEL are sent.
- Best-effort: a failed alert is logged at DEBUG and otherwise ignored.
"""

from __future__ import annotations
import logging
import os

import requests

log = logging.getLogger("notifier")

_LEVELS = {
    "DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50
}


class Notifier:
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING",
                 app_tag: str = "Gravifon scrobbler", timeout: float = 5):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = _LEVELS.get(min_level.upper(), 30)
        self.app_tag = app_tag
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send(self, level: str, title: str, message: str, extra: dict | None = None) -> bool:
        if not self.webhook_url:
            return False
        if _LEVELS.get(level.upper(), 30) < self.min_level:
            return False

        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            log.debug("Notification send failed: %s", e)
            return False
        return True

    # Usable directly as the worker's alert callback
    __call__ = send


def from_env() -> Notifier:
    return Notifier(
        webhook_url=os.getenv("NOTIFY_WEBHOOK_URL"),
        min_level=os.getenv("NOTIFY_MIN_LEVEL", "WARNING"),
        app_tag=os.getenv("APP_TAG", "Gravifon scrobbler"),
    )
