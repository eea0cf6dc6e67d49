import json
import logging
import sys

from notifier import from_env as webhook_notifier_from_env
from playback import TrackChange, to_scrobble_info
from scrobbler import GravifonScrobbler
from settings import ConfigurationError, Settings

log = logging.getLogger("gravifon-scrobbler")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )


def sync_client(scrobbler: GravifonScrobbler, settings: Settings, applied: dict) -> bool:
    """Start, stop or reconfigure the client to match the current settings.

    Returns True if the client is running and accepts scrobbles. `applied`
    remembers the last configuration pushed so unchanged settings are not
    re-applied on every event.
    """
    if not settings.enabled:
        if scrobbler.started() and not scrobbler.stop():
            log.error("Unable to stop Gravifon client.")
        applied.clear()
        return False
    if not scrobbler.started() and not scrobbler.start():
        log.error("Unable to start Gravifon client.")
        return False

    wanted = (settings.url, settings.username, settings.password,
              settings.safe_scrobbling, settings.threshold)
    if applied.get("config") != wanted:
        scrobbler.configure(settings.url, settings.username, settings.password,
                            safe_scrobbling=settings.safe_scrobbling,
                            threshold=settings.threshold * 100)
        applied["config"] = wanted
    # An invalid configuration still records scrobbles, it just doesn't submit them
    return True


def handle_event(scrobbler: GravifonScrobbler, event: dict, settings: Settings, applied: dict) -> bool:
    """Process one track-change event. Returns True if a scrobble was queued."""
    if not sync_client(scrobbler, settings, applied):
        return False
    info = to_scrobble_info(TrackChange.from_event(event), scrobbler.threshold)
    if info is None:
        return False
    return scrobbler.scrobble(info, settings.safe_scrobbling)


def main():
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        raise SystemExit(str(e))

    setup_logging(settings.log_level)
    notifier = webhook_notifier_from_env()  # ok if NOTIFY_WEBHOOK_URL is empty
    scrobbler = GravifonScrobbler(settings.data_path, settings=settings, notifier=notifier)
    applied: dict = {}

    log.info("Starting Gravifon scrobbler. Data file: %s; reading track changes from stdin", settings.data_path)
    if settings.enabled and not scrobbler.start():
        raise SystemExit(1)

    try:
        for line_number, line in enumerate(sys.stdin, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                log.warning("Skipping invalid event on line %d: %s", line_number, e)
                continue
            if not isinstance(event, dict):
                log.warning("Skipping non-object event on line %d", line_number)
                continue
            # Settings may change between events; re-read them like the player does
            try:
                settings = Settings.from_env()
            except ConfigurationError as e:
                log.error("Ignoring configuration change: %s", e)
            handle_event(scrobbler, event, settings, applied)
    except KeyboardInterrupt:
        log.info("Shutting down…")
    finally:
        if not scrobbler.stop():
            log.error("Unable to stop Gravifon client cleanly.")


if __name__ == "__main__":
    main()
