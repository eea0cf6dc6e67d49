"""
Gravifon scrobble wire format.

- encode() renders a ScrobbleInfo as the compact JSON object the service expects,
  keys in a fixed order, timestamps always in UTC with a literal +0000 offset.
- decode() parses that shape back and raises ParseError on anything else;
  parse() is the non-raising variant (returns None).
- parse_response() reads the service's status body, if it sent one.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from scrobble_info import InvalidRecord, ScrobbleInfo, Track

log = logging.getLogger("scrobble-codec")

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S+0000"
_DATETIME_PARSE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
UNIT_MS = "ms"


class ParseError(ValueError): ...


@dataclass(frozen=True)
class ServiceStatus:
    ok: bool
    error_code: int | None = None
    error_description: str | None = None


# -------- encoding --------
def format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(DATETIME_FORMAT)


def _amount(millis: int) -> dict[str, Any]:
    return {"amount": millis, "unit": UNIT_MS}


def _artists(names) -> list[dict[str, str]]:
    return [{"name": name} for name in names]


def track_to_dict(track: Track) -> dict[str, Any]:
    obj: dict[str, Any] = {"title": track.title, "artists": _artists(track.artists)}
    if track.has_album:
        album: dict[str, Any] = {}
        if track.album_title:
            album["title"] = track.album_title
        if track.album_artists:
            album["artists"] = _artists(track.album_artists)
        obj["album"] = album
    if track.duration_millis is not None:
        obj["length"] = _amount(track.duration_millis)
    return obj


def to_dict(info: ScrobbleInfo) -> dict[str, Any]:
    # dicts keep insertion order, which is the order on the wire
    return {
        "scrobble_start_datetime": format_datetime(info.scrobble_start_timestamp),
        "scrobble_end_datetime": format_datetime(info.scrobble_end_timestamp),
        "scrobble_duration": _amount(info.scrobble_duration),
        "track": track_to_dict(info.track),
    }


def encode(info: ScrobbleInfo) -> str:
    return json.dumps(to_dict(info), ensure_ascii=False, separators=(",", ":"))


# -------- decoding --------
def _require(obj: dict, key: str, kind: type | tuple[type, ...]):
    if key not in obj:
        raise ParseError(f"Missing field '{key}'")
    value = obj[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ParseError(f"Field '{key}' has unexpected type {type(value).__name__}")
    return value


def parse_datetime(value: str) -> datetime:
    try:
        return datetime.strptime(value, _DATETIME_PARSE_FORMAT).astimezone(timezone.utc)
    except (ValueError, OverflowError) as e:
        raise ParseError(f"Invalid datetime '{value}': {e}") from e


def _parse_amount(obj: dict, key: str) -> int:
    amount = _require(obj, key, dict)
    value = _require(amount, "amount", int)
    unit = _require(amount, "unit", str)
    if unit != UNIT_MS:
        raise ParseError(f"Unsupported unit '{unit}' in '{key}'")
    return value


def _parse_artists(obj: dict, key: str) -> list[str]:
    names = []
    for item in _require(obj, key, list):
        if not isinstance(item, dict):
            raise ParseError(f"Artist entry in '{key}' is not an object")
        names.append(_require(item, "name", str))
    return names


def track_from_dict(obj: dict) -> Track:
    title = _require(obj, "title", str)
    if not title:
        raise ParseError("Track title is empty")
    artists = _parse_artists(obj, "artists")
    if not artists:
        raise ParseError("Track has no artists")

    album_title = None
    album_artists: list[str] = []
    if "album" in obj:
        album = _require(obj, "album", dict)
        if "title" in album:
            album_title = _require(album, "title", str)
        if "artists" in album:
            album_artists = _parse_artists(album, "artists")

    duration = _parse_amount(obj, "length") if "length" in obj else None

    return Track(
        title=title,
        artists=artists,
        album_title=album_title,
        duration_millis=duration,
        album_artists=album_artists,
    )


def from_dict(obj: Any) -> ScrobbleInfo:
    if not isinstance(obj, dict):
        raise ParseError("Scrobble is not a JSON object")
    try:
        return ScrobbleInfo(
            scrobble_start_timestamp=parse_datetime(_require(obj, "scrobble_start_datetime", str)),
            scrobble_end_timestamp=parse_datetime(_require(obj, "scrobble_end_datetime", str)),
            scrobble_duration=_parse_amount(obj, "scrobble_duration"),
            track=track_from_dict(_require(obj, "track", dict)),
        )
    except InvalidRecord as e:
        raise ParseError(str(e)) from e


def decode(data: str | bytes) -> ScrobbleInfo:
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Scrobble is not valid UTF-8: {e}") from e
    try:
        obj = json.loads(data)
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed JSON: {e}") from e
    return from_dict(obj)


def parse(data: str | bytes) -> ScrobbleInfo | None:
    """Like decode(), but reports failure as None instead of raising."""
    try:
        return decode(data)
    except ParseError as e:
        log.debug("Unable to parse scrobble: %s", e)
        return None


def parse_response(body: str | bytes | None) -> ServiceStatus | None:
    """Read {"ok": ..., "error_code": ..., "error_description": ...} from a service reply.

    Returns None when the body carries no recognisable status; the caller then
    goes by the HTTP status code alone.
    """
    if not body:
        return None
    try:
        obj = json.loads(body)
    except (ValueError, TypeError):
        return None
    if isinstance(obj, list):
        obj = obj[0] if obj else None
    if not isinstance(obj, dict) or not isinstance(obj.get("ok"), bool):
        return None

    code = obj.get("error_code")
    description = obj.get("error_description")
    return ServiceStatus(
        ok=obj["ok"],
        error_code=code if isinstance(code, int) and not isinstance(code, bool) else None,
        error_description=description if isinstance(description, str) else None,
    )
