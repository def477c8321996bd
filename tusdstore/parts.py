"""Slicing an incoming byte stream into temporary files, one per part."""

from __future__ import annotations

import contextlib
import os
import tempfile
import threading
from collections import deque
from collections.abc import Iterator
from itertools import islice
from typing import IO, Any

TEMP_FILE_PREFIX = "tusd-s3-tmp-"

_POLL_INTERVAL = 0.05
_COPY_CHUNK = 64 * 1024


def clean_up_temp_file(file: IO[bytes]) -> None:
    """Close a temporary file and delete it from disk, ignoring failures."""
    with contextlib.suppress(OSError):
        file.close()
    with contextlib.suppress(OSError):
        os.remove(file.name)


class _FileChannel:
    """A closable queue of files holding at most *capacity* unclaimed items."""

    def __init__(self, capacity: int) -> None:
        self._capacity = max(0, capacity)
        self._items: deque[Any] = deque()
        self._closed = False
        self._cond = threading.Condition()

    def _pending(self, item: Any) -> bool:
        return any(queued is item for queued in islice(self._items, self._capacity, None))

    def send(self, item: Any, done: threading.Event) -> bool:
        """Hand over *item*; return False if *done* was set first."""
        with self._cond:
            if done.is_set():
                return False
            self._items.append(item)
            self._cond.notify_all()
            while self._pending(item):
                if done.is_set():
                    self._items.remove(item)
                    return False
                self._cond.wait(_POLL_INTERVAL)
            return True

    def receive(self) -> Any:
        """Take the next item, or None once the channel is closed and empty."""
        with self._cond:
            while not self._items and not self._closed:
                self._cond.wait()
            if not self._items:
                return None
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class PartProducer:
    """Reads a stream and writes it out as a sequence of temporary part files.

    ``produce`` runs in its own thread; the consumer iterates over the producer
    to receive the files in order. Setting ``done`` makes the producer stop.
    A failure while reading is stored in ``error`` and ends the sequence.
    """

    def __init__(
        self,
        reader: IO[bytes],
        temporary_directory: str | None = None,
        max_buffered_parts: int = 0,
    ) -> None:
        self.reader = reader
        self.temporary_directory = temporary_directory or None
        self.done = threading.Event()
        self.error: Exception | None = None
        self._files = _FileChannel(max_buffered_parts)

    def start(self, part_size: int) -> threading.Thread:
        """Run ``produce`` in a background thread and return that thread."""
        thread = threading.Thread(target=self.produce, args=(part_size,), daemon=True)
        thread.start()
        return thread

    def produce(self, part_size: int) -> None:
        """Write parts of *part_size* bytes until the stream ends or ``done`` is set."""
        try:
            while True:
                try:
                    file = self.next_part(part_size)
                except Exception as exc:
                    self.error = exc
                    return
                if file is None:
                    return
                if not self._files.send(file, self.done):
                    clean_up_temp_file(file)
                    return
        finally:
            self._files.close()

    def next_part(self, size: int) -> IO[bytes] | None:
        """Copy up to *size* bytes into a new temporary file, rewound to its start.

        Returns None when the stream has no more data.
        """
        file = tempfile.NamedTemporaryFile(
            mode="w+b", prefix=TEMP_FILE_PREFIX, dir=self.temporary_directory, delete=False
        )
        try:
            written = self._copy_into(file, size)
        except BaseException:
            clean_up_temp_file(file)
            raise
        if written == 0:
            clean_up_temp_file(file)
            return None
        file.seek(0)
        return file

    def _copy_into(self, file: IO[bytes], size: int) -> int:
        remaining = size
        while remaining > 0:
            chunk = self.reader.read(min(remaining, _COPY_CHUNK))
            if not chunk:
                break
            file.write(chunk)
            remaining -= len(chunk)
        file.flush()
        return size - remaining

    def __iter__(self) -> Iterator[IO[bytes]]:
        while (file := self._files.receive()) is not None:
            yield file

    def close(self) -> None:
        """Stop the producer and delete every part that was not consumed."""
        self.done.set()
        for file in self:
            clean_up_temp_file(file)