"""Append-only log file writer without rotation."""

from __future__ import annotations

import os
import threading
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview, str]


class FileWriterError(OSError):
    """Raised when the log file cannot be created, written, flushed or closed."""


class FileWriter:
    """Writes log data to a single file opened in append mode."""

    def __init__(self, filename: Union[str, os.PathLike]) -> None:
        self.filename = os.fspath(filename)
        self._lock = threading.Lock()
        self._closed = False

        directory = os.path.dirname(self.filename) or "."
        try:
            os.makedirs(directory, mode=0o750, exist_ok=True)
        except OSError as exc:
            raise FileWriterError(f"failed to create log directory: {exc}") from exc

        try:
            fd = os.open(self.filename, os.O_CREAT | os.O_WRONLY | os.O_APPEND, 0o600)
        except OSError as exc:
            raise FileWriterError(f"failed to open log file: {exc}") from exc
        self._file = os.fdopen(fd, "ab", buffering=0)

    def _ensure_open(self) -> None:
        if self._closed:
            raise FileWriterError("file already closed")

    def write(self, data: BytesLike) -> int:
        """Append ``data`` to the file and return the number of bytes written."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock:
            self._ensure_open()
            written = 0
            view = memoryview(payload)
            try:
                while written < len(payload):
                    count = self._file.write(view[written:])
                    if not count:
                        break
                    written += count
            except OSError as exc:
                raise FileWriterError(f"failed to write log file: {exc}") from exc
            return written

    def flush(self) -> None:
        """Force written data to disk."""
        with self._lock:
            self._ensure_open()
            try:
                os.fsync(self._file.fileno())
            except OSError as exc:
                raise FileWriterError(f"failed to sync log file: {exc}") from exc

    def close(self) -> None:
        """Close the underlying file; closing twice is an error."""
        with self._lock:
            self._ensure_open()
            self._closed = True
            try:
                self._file.close()
            except OSError as exc:
                raise FileWriterError(f"failed to close log file: {exc}") from exc

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "FileWriter":
        return self

    def __exit__(self, *args) -> None:
        if not self._closed:
            self.close()