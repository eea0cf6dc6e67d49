"""
Background submission of queued scrobbles.

One thread drains the queue head-first:
- success: the entry is removed and the next one is sent right away;
- transient failure: the same entry is retried after an exponential backoff;
- permanent failure: sending is suspended until the client is reconfigured.

Nothing is ever skipped; an entry leaves the queue only once Gravifon has it.
"""

from __future__ import annotations
import enum
import logging
import threading
from typing import Callable, Iterator

import backoff

from gravifon_client import GravifonClient, PermanentDeliveryError, TransientDeliveryError
from scrobble_queue import ScrobbleQueue

log = logging.getLogger("submission")


class WorkerState(enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    BACKOFF_WAIT = "backoff_wait"
    SUSPENDED = "suspended"
    STOPPED = "stopped"


AlertFn = Callable[[str, str, str, dict], None]


class SubmissionWorker:
    def __init__(self, queue: ScrobbleQueue, client: GravifonClient | None = None, *,
                 backoff_floor: float = 1.0, backoff_ceiling: float = 300.0,
                 alert: AlertFn | None = None):
        self.queue = queue
        self.backoff_floor = backoff_floor
        self.backoff_ceiling = backoff_ceiling
        self._alert = alert

        self._cond = threading.Condition()
        self._client = client
        self._generation = 0  # bumped on every reconfigure/suspend
        self._woken = False
        self._stopping = False
        self._thread: threading.Thread | None = None
        self._delays: Iterator[float] | None = None
        self.state = WorkerState.IDLE if client else WorkerState.SUSPENDED
        self.last_delay: float | None = None

    # -------- control (called from producer threads) --------
    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                # Still finishing a send after a timed-out stop(); keep it
                self._stopping = False
                return
            self._stopping = False
            if self.state is WorkerState.STOPPED:
                self.state = WorkerState.IDLE if self._client else WorkerState.SUSPENDED
            self._thread = threading.Thread(target=self.run, name="gravifon-submission", daemon=True)
            self._thread.start()

    def stop(self, timeout: float | None = None) -> bool:
        """Ask the thread to finish and wait for it. Returns False if it is still busy."""
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            thread = self._thread
        if thread is None:
            self.state = WorkerState.STOPPED
            return True
        thread.join(timeout)
        if thread.is_alive():
            log.warning("Submission thread did not finish within %ss", timeout)
            return False
        self._thread = None
        return True

    def notify(self) -> None:
        """Wake the worker after something was queued."""
        with self._cond:
            self._woken = True
            self._cond.notify_all()

    def reconfigure(self, client: GravifonClient) -> None:
        with self._cond:
            old, self._client = self._client, client
            self._generation += 1
            self._delays = None
            if self.state is WorkerState.SUSPENDED:
                self.state = WorkerState.IDLE
            self._cond.notify_all()
        if old is not None and old is not client:
            old.close()

    def suspend(self) -> None:
        with self._cond:
            old, self._client = self._client, None
            self._generation += 1
            if self.state is not WorkerState.STOPPED:
                self.state = WorkerState.SUSPENDED
            self._cond.notify_all()
        if old is not None:
            old.close()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def configured(self) -> bool:
        return self._client is not None

    # -------- work --------
    def step(self) -> WorkerState:
        """Make one attempt on the head entry without waiting; return the resulting state."""
        with self._cond:
            client = self._client
            if client is None:
                self.state = WorkerState.SUSPENDED
                return self.state
            if self.state is WorkerState.SUSPENDED:
                # Suspended by a rejection; only reconfigure() lifts it
                return self.state

        entry = self.queue.peek_head()
        if entry is None:
            self.state = WorkerState.IDLE
            return self.state

        self.queue.mark_in_flight(entry.sequence)
        self.state = WorkerState.SENDING
        try:
            client.scrobble(entry.payload)
        except TransientDeliveryError as e:
            self.queue.mark_pending_again(entry.sequence)
            self.last_delay = self._next_delay()
            log.info("Scrobble #%s not delivered (%s); retrying in %.1fs. queue=%s",
                     entry.sequence, e, self.last_delay, self.queue.size())
            self.state = WorkerState.BACKOFF_WAIT
            return self.state
        except PermanentDeliveryError as e:
            self.queue.mark_pending_again(entry.sequence)
            with self._cond:
                # A reconfigure that raced with the send wins
                if self._client is client:
                    self.state = WorkerState.SUSPENDED
                else:
                    self.state = WorkerState.IDLE
            log.error("Scrobble #%s rejected: %s; submission suspended until reconfigured. queue=%s",
                      entry.sequence, e, self.queue.size())
            self._send_alert("ERROR", "Gravifon scrobbling suspended", str(e),
                             {"pending_queue_size": self.queue.size()})
            return self.state
        except Exception:
            self.queue.mark_pending_again(entry.sequence)
            raise

        try:
            self.queue.remove_head(entry.sequence)
        except OSError as e:
            # Delivered but still on disk: it will be sent again, duplicates are acceptable
            self.queue.mark_pending_again(entry.sequence)
            self.last_delay = self._next_delay()
            log.error("Scrobble #%s delivered but could not be removed from %s: %s",
                      entry.sequence, self.queue.path, e)
            self.state = WorkerState.BACKOFF_WAIT
            return self.state

        self._delays = None
        self.last_delay = None
        log.info("Scrobbled #%s. queue=%s", entry.sequence, self.queue.size())
        self.state = WorkerState.IDLE
        return self.state

    def _next_delay(self) -> float:
        if self._delays is None:
            self._delays = backoff.expo(factor=self.backoff_floor, max_value=self.backoff_ceiling)
            next(self._delays)  # advance past the generator's priming yield
        return next(self._delays)

    def run(self) -> None:
        log.info("Submission worker started. queue=%s", self.queue.size())
        while True:
            with self._cond:
                if self._stopping:
                    break
                self._woken = False
                generation = self._generation

            try:
                state = self.step()
            except Exception:
                # Keep the thread alive; the entry is still queued
                log.exception("Unexpected error while submitting scrobbles")
                state = self.state = WorkerState.BACKOFF_WAIT
                self.last_delay = self._next_delay()

            with self._cond:
                if state is WorkerState.BACKOFF_WAIT:
                    self._cond.wait_for(
                        lambda: self._stopping or self._generation != generation,
                        timeout=self.last_delay,
                    )
                elif state is WorkerState.SUSPENDED:
                    self._cond.wait_for(lambda: self._stopping or self._generation != generation)
                elif state is WorkerState.IDLE and self.queue.peek_head() is None:
                    self._cond.wait_for(
                        lambda: self._stopping or self._woken or self._generation != generation
                    )

        with self._cond:
            self.state = WorkerState.STOPPED
        log.info("Submission worker stopped. queue=%s", self.queue.size())

    def _send_alert(self, level: str, title: str, message: str, extra: dict) -> None:
        if self._alert is None:
            return
        try:
            self._alert(level, title, message, extra)
        except Exception as e:
            log.debug("Alert failed: %s", e)
