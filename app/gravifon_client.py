import logging

import requests

from scrobble_codec import parse_response

log = logging.getLogger("gravifon")

DEFAULT_URL = "http://api.gravifon.org/v1"


# Custom error classes so callers can branch
class DeliveryError(Exception): ...
class TransientDeliveryError(DeliveryError): ...  # network, timeout, 5xx: retry later
class PermanentDeliveryError(DeliveryError): ...  # rejected: retrying won't help until reconfigured
class GravifonAuthError(PermanentDeliveryError): ...

# 408 Request Timeout and 429 Too Many Requests are worth retrying like 5xx
_RETRYABLE_4XX = (408, 429)
_AUTH_STATUSES = (401, 403)


class GravifonClient:
    """Thin wrapper over requests for posting encoded scrobbles to Gravifon."""

    def __init__(self, base_url: str, username: str, password: str,
                 timeout: float = 10, session: requests.Session | None = None):
        if not username or not password:
            raise ValueError("Missing Gravifon credentials")
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.timeout = timeout
        self._auth = (username, password)
        self._owns_session = session is None
        self.session = session or requests.Session()

    @property
    def scrobbles_url(self) -> str:
        return f"{self.base_url}/scrobbles"

    def scrobble(self, payload: str) -> None:
        """Submit one encoded scrobble. Returns on acknowledgement, raises DeliveryError otherwise."""
        try:
            resp = self.session.post(
                self.scrobbles_url,
                data=payload.encode("utf-8"),
                auth=self._auth,
                headers={"Content-Type": "application/json; charset=utf-8",
                         "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientDeliveryError(f"Network error: {e}") from e

        code = resp.status_code
        status = parse_response(resp.text)
        detail = f"HTTP {code}"
        if status is not None and status.error_description:
            detail = f"{detail} (error {status.error_code}: {status.error_description})"

        if 200 <= code < 300:
            if status is not None and not status.ok:
                raise PermanentDeliveryError(f"Scrobble rejected: {detail}")
            log.debug("Scrobble accepted: %s", detail)
            return
        if code in _AUTH_STATUSES:
            raise GravifonAuthError(f"Authentication failed for '{self.username}': {detail}")
        if code in _RETRYABLE_4XX or code >= 500:
            raise TransientDeliveryError(f"Service unavailable: {detail}")
        raise PermanentDeliveryError(f"Scrobble rejected: {detail}")

    def close(self) -> None:
        if self._owns_session:
            self.session.close()
