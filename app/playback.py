from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from scrobble_info import InvalidRecord, ScrobbleInfo, Track

log = logging.getLogger("playback")

# Multi-valued tags arrive as one string with values separated by line feeds
TAG_SEPARATOR = "\n"

ALBUM_ARTIST_KEYS = ("album artist", "albumartist", "band")


# -------------------------
# A finished track, as reported by the player on track change
# -------------------------
@dataclass(frozen=True)
class TrackChange:
    title: str | None
    artist: str | None
    album: str | None
    album_artist: str | None
    duration: float  # seconds, approximate
    play_time: float  # seconds actually played
    started_timestamp: int  # unix seconds

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> "TrackChange":
        album_artist = None
        for key in ALBUM_ARTIST_KEYS:
            if event.get(key):
                album_artist = event[key]
                break
        return cls(
            title=event.get("title") or None,
            artist=event.get("artist") or None,
            album=event.get("album") or None,
            album_artist=album_artist,
            duration=float(event.get("duration") or 0),
            play_time=float(event.get("playtime") or 0),
            started_timestamp=int(event.get("started_timestamp") or 0),
        )


def split_multi_tag(value: str) -> list[str]:
    return value.split(TAG_SEPARATOR)


def played_enough(play_time: float, duration: float, threshold: float) -> bool:
    """A track counts once `threshold` (0..1) of it was played. Zero-length tracks never do."""
    if duration <= 0:
        return False
    return play_time >= threshold * duration


def _millis(seconds: float) -> int:
    return int(seconds * 1000)


def to_scrobble_info(change: TrackChange, threshold: float, now: datetime | None = None) -> ScrobbleInfo | None:
    """Build the scrobble for a finished track, or None if it should not be scrobbled."""
    if not played_enough(change.play_time, change.duration, threshold):
        log.debug("The track is played not long enough to be scrobbled "
                  "(play duration: %.1fs; track duration: %.1fs).", change.play_time, change.duration)
        return None
    if not change.title:
        # Title is required by Gravifon
        return None

    # Fall back to the album artist when the track has no artist of its own
    artist = change.artist or change.album_artist
    if not artist:
        return None

    end = now or datetime.now(timezone.utc)
    try:
        track = Track(
            title=change.title,
            artists=split_multi_tag(artist),
            album_title=change.album,
            duration_millis=_millis(change.duration),
            album_artists=split_multi_tag(change.album_artist) if change.album_artist else (),
        )
        return ScrobbleInfo(
            scrobble_start_timestamp=change.started_timestamp,
            scrobble_end_timestamp=end,
            scrobble_duration=_millis(change.play_time),
            track=track,
        )
    except InvalidRecord as e:
        log.warning("Skipping unscrobblable track '%s': %s", change.title, e)
        return None
