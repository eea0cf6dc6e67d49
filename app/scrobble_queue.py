"""
Persistent, ordered scrobble queue.

- Pending scrobbles live in a JSON Lines file, one {"seq", "scrobble"} object per line,
  so plays survive network errors and crashes.
- The file is a write-ahead log: append() adds a line, remove_head() compacts the
  file atomically, and opening the queue rebuilds the in-memory index from it.
- A torn tail (partial write from a crash) is dropped on load; everything
  complete before it is kept.
- Entries are strictly FIFO. IN_FLIGHT is an in-memory flag only, so an entry
  whose send was interrupted is simply PENDING again after a restart.
"""

from __future__ import annotations
import enum
import json
import logging
import os
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator

log = logging.getLogger("scrobble-queue")


class EntryState(enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"


@dataclass
class QueueEntry:
    sequence: int
    payload: str  # encoded scrobble, exactly as it is sent
    state: EntryState = EntryState.PENDING
    durable: bool = True  # False: kept in memory only (safe scrobbling off)


class ScrobbleQueue:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._q: Deque[QueueEntry] = deque()
        self._next_seq = 1
        self._dirty = False  # file may end in a torn line that could not be truncated
        self._load()

    @classmethod
    def open(cls, path: str) -> "ScrobbleQueue":
        return cls(path)

    # -------- persistence --------
    def _load(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.isfile(self.path):
            # Create it now so a bad path fails at start, not at the first scrobble
            with open(self.path, "a", encoding="utf-8"):
                pass
            return

        entries, damaged = self._read_entries()
        self._q.extend(entries)
        if entries:
            self._next_seq = entries[-1].sequence + 1

        if damaged:
            log.warning("Discarded damaged data at the end of %s; recovered %s scrobble(s)",
                        self.path, len(entries))
            # Rewrite so later appends don't land after a torn line
            self._save()
        elif entries:
            log.info("Loaded %s pending scrobble(s) from %s", len(entries), self.path)

    def _read_entries(self) -> tuple[list[QueueEntry], bool]:
        entries: list[QueueEntry] = []
        with open(self.path, "rb") as f:
            lines = f.read().split(b"\n")

        # The chunk after the last newline is empty for an intact file;
        # anything else there was never completely written.
        complete, tail = lines[:-1], lines[-1]
        for line_number, raw in enumerate(complete, start=1):
            entry = self._parse_line(raw)
            if entry is None:
                log.warning("Unreadable line %s in %s", line_number, self.path)
                return entries, True
            if entries and entry.sequence <= entries[-1].sequence:
                log.warning("Out-of-order sequence %s at line %s of %s", entry.sequence, line_number, self.path)
                return entries, True
            entries.append(entry)
        return entries, bool(tail)

    @staticmethod
    def _parse_line(raw: bytes) -> QueueEntry | None:
        try:
            obj = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(obj, dict):
            return None
        seq = obj.get("seq")
        payload = obj.get("scrobble")
        if isinstance(seq, bool) or not isinstance(seq, int) or not isinstance(payload, str):
            return None
        return QueueEntry(sequence=seq, payload=payload)

    @staticmethod
    def _line(entry: QueueEntry) -> bytes:
        return (json.dumps({"seq": entry.sequence, "scrobble": entry.payload},
                           ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")

    def _save(self) -> None:
        # Write atomically to avoid corruption
        tmp = f"{self.path}.tmp"
        with open(tmp, "wb") as f:
            for entry in self._q:
                if entry.durable:
                    f.write(self._line(entry))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
        self._dirty = False

    def _write_line(self, entry: QueueEntry) -> None:
        with open(self.path, "ab") as f:
            size = f.tell()
            try:
                f.write(self._line(entry))
                f.flush()
                os.fsync(f.fileno())
            except OSError:
                # Leave no half-written line behind if we can help it
                try:
                    f.truncate(size)
                except OSError as e:
                    log.error("Unable to cut a partial write from %s: %s", self.path, e)
                    self._dirty = True
                raise

    # -------- public API --------
    def append(self, payload: str, durable: bool = True) -> int:
        """Queue an encoded scrobble and return its sequence number.

        With durable=True the line is on disk before this returns; an OSError
        means the scrobble was not queued.
        """
        with self._lock:
            entry = QueueEntry(sequence=self._next_seq, payload=payload, durable=durable)
            if durable:
                if self._dirty:
                    # Rewrite from memory so the new line doesn't land after torn bytes
                    self._save()
                self._write_line(entry)
            self._q.append(entry)
            self._next_seq += 1
            return entry.sequence

    def peek_head(self) -> QueueEntry | None:
        """Oldest entry if it is waiting to be sent; None if empty or already in flight."""
        with self._lock:
            if not self._q or self._q[0].state is not EntryState.PENDING:
                return None
            return self._q[0]

    def mark_in_flight(self, sequence: int) -> None:
        self._set_state(sequence, EntryState.IN_FLIGHT)

    def mark_pending_again(self, sequence: int) -> None:
        self._set_state(sequence, EntryState.PENDING)

    def _set_state(self, sequence: int, state: EntryState) -> None:
        with self._lock:
            for entry in self._q:
                if entry.sequence == sequence:
                    entry.state = state
                    return
            raise KeyError(f"No queued scrobble with sequence {sequence}")

    def remove_head(self, sequence: int) -> bool:
        """Drop the acknowledged head entry from disk and memory.

        Returns False if `sequence` is not the head. Raises OSError if the
        file could not be compacted; the entry then stays queued.
        """
        with self._lock:
            if not self._q or self._q[0].sequence != sequence:
                return False
            head = self._q.popleft()
            if head.durable:
                try:
                    self._save()
                except OSError:
                    self._q.appendleft(head)
                    raise
            return True

    def flush(self) -> int:
        """Write memory-only entries to disk. Returns how many were persisted."""
        with self._lock:
            volatile = [entry for entry in self._q if not entry.durable]
            if not volatile:
                return 0
            for entry in volatile:
                entry.durable = True
            try:
                self._save()
            except OSError:
                for entry in volatile:
                    entry.durable = False
                raise
            return len(volatile)

    def reload(self) -> None:
        """Rebuild memory from the file, exactly as a restart would."""
        with self._lock:
            dropped = sum(1 for entry in self._q if not entry.durable)
            if dropped:
                log.warning("Reload drops %s memory-only scrobble(s)", dropped)
            next_seq = self._next_seq
            self._q.clear()
            self._load()
            self._next_seq = max(self._next_seq, next_seq)

    def entries(self) -> list[QueueEntry]:
        with self._lock:
            return list(self._q)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(self.entries())

    def size(self) -> int:
        with self._lock:
            return len(self._q)

    def __len__(self) -> int:
        return self.size()
