from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable


class InvalidRecord(ValueError): ...


def to_utc(value: datetime | int | float) -> datetime:
    """Normalise a timestamp to an aware UTC datetime with second precision.

    Naive datetimes are taken as UTC; ints/floats are unix seconds.
    """
    if isinstance(value, bool):
        raise InvalidRecord(f"Invalid timestamp: {value!r}")
    if not isinstance(value, (int, float, datetime)):
        raise InvalidRecord(f"Invalid timestamp: {value!r}")
    try:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            value = value.astimezone(timezone.utc)
        else:
            value = datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidRecord(f"Timestamp out of range: {value!r}") from e
    return value.replace(microsecond=0)


# -------------------------
# One track, as reported by the player
# -------------------------
@dataclass(frozen=True)
class Track:
    title: str
    artists: tuple[str, ...] = ()
    album_title: str | None = None
    duration_millis: int | None = None  # full track length
    album_artists: tuple[str, ...] = ()

    def __post_init__(self):
        # Accept any iterable for the artist lists but store tuples
        object.__setattr__(self, "artists", _names(self.artists))
        object.__setattr__(self, "album_artists", _names(self.album_artists))
        _check_text(self.title, "title")
        if self.album_title is not None:
            _check_text(self.album_title, "album title")
        for name in self.artists + self.album_artists:
            _check_text(name, "artist name")
        if self.duration_millis is not None:
            if isinstance(self.duration_millis, bool) or not isinstance(self.duration_millis, int):
                raise InvalidRecord(f"Track duration must be an integer: {self.duration_millis!r}")
            if self.duration_millis < 0:
                raise InvalidRecord(f"Track duration is negative: {self.duration_millis}")

    @property
    def is_submittable(self) -> bool:
        return bool(self.title) and bool(self.artists)

    @property
    def has_album(self) -> bool:
        return bool(self.album_title) or bool(self.album_artists)


def _check_text(value, field: str) -> None:
    if not isinstance(value, str):
        raise InvalidRecord(f"Track {field} must be a string: {value!r}")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        # e.g. lone surrogates left by a lossy decode upstream; they could never be sent
        raise InvalidRecord(f"Track {field} is not valid Unicode text: {value!r}") from e


def _names(values: Iterable[str] | str) -> tuple[str, ...]:
    if isinstance(values, str):
        # A bare string is one artist, not a sequence of characters
        return (values,)
    return tuple(values)


@dataclass(frozen=True)
class ScrobbleInfo:
    """A single completed listen. Immutable once built."""

    scrobble_start_timestamp: datetime
    scrobble_end_timestamp: datetime
    scrobble_duration: int  # ms actually played
    track: Track

    def __post_init__(self):
        start = to_utc(self.scrobble_start_timestamp)
        end = to_utc(self.scrobble_end_timestamp)
        object.__setattr__(self, "scrobble_start_timestamp", start)
        object.__setattr__(self, "scrobble_end_timestamp", end)

        if end < start:
            raise InvalidRecord(f"Scrobble ends ({end.isoformat()}) before it starts ({start.isoformat()})")
        if isinstance(self.scrobble_duration, bool) or not isinstance(self.scrobble_duration, int):
            raise InvalidRecord(f"Scrobble duration must be an integer: {self.scrobble_duration!r}")
        if self.scrobble_duration < 0:
            raise InvalidRecord(f"Scrobble duration is negative: {self.scrobble_duration}")
        if not isinstance(self.track, Track):
            raise InvalidRecord(f"Not a track: {self.track!r}")
        if not self.track.title:
            raise InvalidRecord("Track title is required")
        if not self.track.artists:
            raise InvalidRecord("At least one track artist is required")


def new_scrobble_info(start: datetime | int, end: datetime | int, duration_ms: int, track: Track) -> ScrobbleInfo:
    return ScrobbleInfo(
        scrobble_start_timestamp=start,
        scrobble_end_timestamp=end,
        scrobble_duration=duration_ms,
        track=track,
    )
