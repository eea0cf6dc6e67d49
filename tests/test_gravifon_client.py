"""Tests for posting scrobbles and classifying the service's answers."""

from __future__ import annotations

import pytest
import requests

from conftest import FakeSession
from gravifon_client import (
    GravifonAuthError, GravifonClient, PermanentDeliveryError, TransientDeliveryError,
)


def _client(*outcomes) -> tuple[GravifonClient, FakeSession]:
    session = FakeSession(*outcomes)
    return GravifonClient("http://api.gravifon.org/v1/", "user", "secret", timeout=3, session=session), session


def test_posts_payload_with_credentials() -> None:
    client, session = _client(200)
    client.scrobble('{"title":"Пачатак"}')
    post = session.posts[0]
    assert post["url"] == "http://api.gravifon.org/v1/scrobbles"
    assert post["data"] == '{"title":"Пачатак"}'.encode("utf-8")
    assert post["auth"] == ("user", "secret")
    assert post["timeout"] == 3
    assert post["headers"]["Content-Type"].startswith("application/json")


def test_ok_body_is_success() -> None:
    client, _ = _client((200, '{"ok":true}'))
    client.scrobble("{}")


@pytest.mark.parametrize("outcome", [500, 502, 503, 408, 429,
                                     requests.ConnectionError("refused"),
                                     requests.Timeout("slow")])
def test_transient_failures(outcome) -> None:
    client, _ = _client(outcome)
    with pytest.raises(TransientDeliveryError):
        client.scrobble("{}")


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failures(status) -> None:
    client, _ = _client(status)
    with pytest.raises(GravifonAuthError):
        client.scrobble("{}")


@pytest.mark.parametrize("outcome", [400, 404, 422,
                                     (200, '{"ok":false,"error_code":5,"error_description":"bad scrobble"}')])
def test_permanent_failures(outcome) -> None:
    client, _ = _client(outcome)
    with pytest.raises(PermanentDeliveryError) as excinfo:
        client.scrobble("{}")
    assert not isinstance(excinfo.value, TransientDeliveryError)


def test_error_description_is_reported() -> None:
    client, _ = _client((400, '{"ok":false,"error_code":5,"error_description":"bad scrobble"}'))
    with pytest.raises(PermanentDeliveryError, match="bad scrobble"):
        client.scrobble("{}")


def test_missing_credentials() -> None:
    with pytest.raises(ValueError):
        GravifonClient("http://api.gravifon.org/v1", "", "secret")


def test_close_leaves_shared_session_open() -> None:
    client, session = _client()
    client.close()  # FakeSession has no close(); calling it would fail
