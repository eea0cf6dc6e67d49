"""
The scrobbling client the host talks to.

GravifonScrobbler owns the durable queue and the submission worker. scrobble()
only queues (never touches the network); the worker delivers in the background.
Lifecycle and configuration calls are serialised by one lock and are safe to
repeat.
"""

from __future__ import annotations
import logging
import os
import threading

import requests

from gravifon_client import DEFAULT_URL, GravifonClient
from notifier import Notifier
from scrobble_codec import encode
from scrobble_info import ScrobbleInfo
from scrobble_queue import ScrobbleQueue
from settings import ConfigurationError, Settings, clamp_threshold, to_ascii, validate_url
from submission_worker import SubmissionWorker, WorkerState

log = logging.getLogger("scrobbler")


class GravifonScrobbler:
    def __init__(self, data_file_path: str, *, settings: Settings | None = None,
                 notifier: Notifier | None = None, session: requests.Session | None = None):
        self.data_file_path = os.path.expanduser(data_file_path)
        self.settings = settings or Settings()
        self.notifier = notifier
        self._session = session  # shared by every client built here; tests pass a fake
        self._lock = threading.Lock()

        self.queue: ScrobbleQueue | None = None
        self.worker: SubmissionWorker | None = None
        self._client: GravifonClient | None = None
        self.safe_scrobbling = self.settings.safe_scrobbling
        self.threshold = self.settings.threshold

    # -------- lifecycle --------
    def start(self) -> bool:
        with self._lock:
            if self.worker is not None and self.worker.running:
                self.worker.start()  # cancels a stop() that timed out
                return True
            try:
                if self.queue is None:
                    self.queue = ScrobbleQueue.open(self.data_file_path)
            except OSError as e:
                log.error("Unable to open scrobble data file %s: %s", self.data_file_path, e)
                return False

            if self.worker is None:
                self.worker = SubmissionWorker(
                    self.queue, self._client,
                    backoff_floor=self.settings.backoff_floor,
                    backoff_ceiling=self.settings.backoff_ceiling,
                    alert=self.notifier,
                )
            self.worker.start()
            log.info("Gravifon client started. Data file: %s (pending=%s)",
                     self.data_file_path, self.queue.size())
            return True

    def stop(self) -> bool:
        with self._lock:
            worker, queue = self.worker, self.queue
            if worker is None:
                return True

        # Joined without the lock: scrobble()/configure() must not wait on a send in flight,
        # which is left to finish or time out on its own
        stopped = worker.stop(timeout=self.settings.timeout + 1)

        with self._lock:
            ok = True
            if self.settings.flush_on_stop and queue is not None:
                try:
                    flushed = queue.flush()
                    if flushed:
                        log.info("Saved %s unsent scrobble(s) to %s", flushed, self.data_file_path)
                except OSError as e:
                    log.error("Unable to save unsent scrobbles to %s: %s", self.data_file_path, e)
                    ok = False
            # A start() that raced with us may have revived the worker; keep it then
            if stopped and self.worker is worker and not worker.running:
                self.worker = None
                self.queue = None
            log.info("Gravifon client stopped.")
            return ok and stopped

    def started(self) -> bool:
        with self._lock:
            return self.worker is not None and self.worker.running

    # -------- configuration --------
    def configure(self, url: str = DEFAULT_URL, username: str = "", password: str = "",
                  safe_scrobbling: bool | None = None, threshold: float | None = None) -> bool:
        """Apply new settings. Returns False (and suspends submission) if they are unusable.

        `threshold` is a percentage (0..100). Scrobbles keep being queued even
        when the configuration is invalid.
        """
        with self._lock:
            if safe_scrobbling is not None:
                self.safe_scrobbling = bool(safe_scrobbling)
            if threshold is not None:
                self.threshold = clamp_threshold(threshold)
            try:
                client = GravifonClient(
                    validate_url(url),
                    to_ascii(username, "username"),
                    to_ascii(password, "password"),
                    timeout=self.settings.timeout,
                    session=self._session,
                )
            except (ConfigurationError, ValueError) as e:
                log.error("Invalid Gravifon configuration: %s. Scrobbles are still recorded but not submitted.", e)
                self._invalidate()
                return False

            old, self._client = self._client, client
            if self.worker is not None:
                self.worker.reconfigure(client)
            elif old is not None:
                old.close()
            log.info("Gravifon client configured: url=%s username=%s", client.base_url, client.username)
            return True

    def invalidate_configuration(self) -> None:
        with self._lock:
            self._invalidate()

    def _invalidate(self) -> None:
        self._client = None
        if self.worker is not None:
            self.worker.suspend()

    # -------- ingestion --------
    def scrobble(self, record: ScrobbleInfo, safe_scrobbling: bool | None = None) -> bool:
        """Queue a completed listen for submission. Never waits on the network."""
        if safe_scrobbling is None:
            safe_scrobbling = self.safe_scrobbling
        if not isinstance(record, ScrobbleInfo):
            log.error("Not a scrobble: %r", record)
            return False
        payload = encode(record)

        with self._lock:
            queue, worker = self.queue, self.worker
            if queue is None or worker is None:
                log.warning("Gravifon client is not started; scrobble dropped: %s", record.track.title)
                return False
            try:
                seq = queue.append(payload, durable=safe_scrobbling)
            except OSError as e:
                # Better a scrobble that dies with the process than none at all
                log.error("Unable to write scrobble to %s: %s; keeping it in memory only",
                          self.data_file_path, e)
                seq = queue.append(payload, durable=False)
            worker.notify()

        log.debug("Queued scrobble #%s: %s", seq, record.track.title)
        return True

    def status(self) -> dict:
        with self._lock:
            worker = self.worker
            return {
                "started": worker is not None and worker.running,
                "state": (worker.state if worker is not None else WorkerState.STOPPED).value,
                "configured": self._client is not None,
                "pending": self.queue.size() if self.queue is not None else 0,
                "safe_scrobbling": self.safe_scrobbling,
            }
