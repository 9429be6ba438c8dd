"""Watches add/remove directories and loads gzipped coupon files into the repository."""

from __future__ import annotations

import fnmatch
import gzip
import hashlib
import os
import queue
import threading
import time
import uuid
import zlib
from dataclasses import dataclass
from typing import Any, Iterator, List, Sequence

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .models import ProcessedCouponFile
from .repository import CouponRepository

VERSION = "0.1.0"
COMMIT_HASH = "5b92121"

DEFAULT_BATCH_SIZE = 5000
_WORKERS = 4
_QUEUE_DEPTH = 10
_HASH_CHUNK = 64 * 1024
_MAX_LINE = 1024 * 1024
_POLL = 0.05


@dataclass
class ProcessorConfig:
    """Where coupon files are dropped and how many codes go into one batch."""

    data_directory: str = ""
    batch_size: int = 0


@dataclass
class BatchProcessor:
    """Sends one batch of codes to the repository as an add or a deactivation."""

    repo: CouponRepository
    is_add: bool
    file_name: str
    log: Any

    def process_batch(self, codes: Sequence[str]) -> None:
        if not codes:
            return
        if self.is_add:
            self.repo.add_coupons(self.file_name, codes)
        else:
            self.repo.deactivate_coupons(self.file_name, codes)


class _Cancelled(Exception):
    def __init__(self) -> None:
        super().__init__("context canceled")


class _StreamError(Exception):
    """A failure while streaming a file, carrying how many codes were handed out."""

    def __init__(self, cause: BaseException, total: int) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.total = total


class _GzEventHandler(FileSystemEventHandler):
    def __init__(self, events: "queue.Queue[str]") -> None:
        super().__init__()
        self._events = events

    def on_created(self, event) -> None:
        if not event.is_directory:
            self._events.put(os.fsdecode(event.src_path))

    def on_moved(self, event) -> None:
        if not event.is_directory:
            self._events.put(os.fsdecode(event.dest_path))


def _gzip_header_error(handle) -> str:
    """Return why the stream does not start with a gzip header, or an empty string."""
    header = handle.read(10)
    handle.seek(0)
    if not header:
        return "EOF"
    if len(header) < 10:
        return "unexpected EOF"
    if header[:2] != b"\x1f\x8b" or header[2] != 8:
        return "gzip: invalid header"
    return ""


def _lines(stream) -> Iterator[str]:
    """Yield the stripped lines of a decompressed stream."""
    while True:
        try:
            raw = stream.readline(_MAX_LINE)
        except (OSError, EOFError, zlib.error) as exc:
            raise RuntimeError(f"scanner error: {exc}") from exc
        if not raw:
            return
        if len(raw) == _MAX_LINE and not raw.endswith(b"\n"):
            raise RuntimeError("scanner error: bufio.Scanner: token too long")
        yield raw.decode("utf-8", errors="replace").strip()


class CouponProcessor:
    """Loads coupon files from ``<data>/add`` and ``<data>/remove`` into the repository."""

    def __init__(self, repo: CouponRepository, config: ProcessorConfig, log: Any) -> None:
        if config.batch_size < 1:
            config.batch_size = DEFAULT_BATCH_SIZE
        self.repo = repo
        self.config = config
        self.log = log
        self._stop = threading.Event()

    def run(self, stop_event: threading.Event) -> None:
        """Process existing files, then watch for new ones until ``stop_event`` is set."""
        self._stop = stop_event
        add_dir = f"{self.config.data_directory}/add"
        remove_dir = f"{self.config.data_directory}/remove"
        for label, directory in (("add", add_dir), ("remove", remove_dir)):
            try:
                os.makedirs(directory, mode=0o750, exist_ok=True)
            except OSError as exc:
                raise OSError(f"failed to create {label} dir: {exc}") from exc
        self.log.info("Watching directories: %s, %s", add_dir, remove_dir)

        events: "queue.Queue[str]" = queue.Queue()
        handler = _GzEventHandler(events)
        try:
            observer = Observer()
        except Exception as exc:
            raise RuntimeError(f"failed to create watcher: {exc}") from exc
        for label, directory in (("add", add_dir), ("remove", remove_dir)):
            try:
                observer.schedule(handler, directory, recursive=False)
            except Exception as exc:
                raise RuntimeError(f"failed to watch {label} dir: {exc}") from exc
        observer.start()
        try:
            self.log.info("processExistingFiles add-dir: %s", add_dir)
            self.process_existing_files(add_dir, True)
            self.log.info("processExistingFiles remove-dir: %s", remove_dir)
            self.process_existing_files(remove_dir, False)

            while not stop_event.is_set():
                try:
                    path = events.get(timeout=0.1)
                except queue.Empty:
                    continue
                if not path.endswith(".gz"):
                    continue
                normalized = path.replace(os.sep, "/")
                if "/add/" in normalized:
                    self.handle_gz_file(path, True)
                elif "/remove/" in normalized:
                    self.handle_gz_file(path, False)
        finally:
            observer.stop()
            observer.join()

    def process_existing_files(self, directory: str, is_add: bool) -> None:
        """Handle every ``.gz`` file already present in ``directory``, in name order."""
        try:
            names = os.listdir(directory)
        except OSError:
            names = []
        files: List[str] = sorted(
            os.path.join(directory, name) for name in names if fnmatch.fnmatchcase(name, "*.gz")
        )
        self.log.info("processExistingFiles %s, files %s", directory, files)
        for path in files:
            self.handle_gz_file(path, is_add)

    def handle_gz_file(self, path: str, is_add: bool) -> None:
        """Load one gzipped file of codes, skipping or resuming according to its record."""
        self.log.info("Processing file: %s", path)
        try:
            handle = open(path, "rb")
        except OSError as exc:
            self.log.error("failed to open file: %s", exc)
            return
        with handle:
            self._handle_open_file(handle, path, is_add)

    def _handle_open_file(self, handle, path: str, is_add: bool) -> None:
        try:
            size = os.fstat(handle.fileno()).st_size
        except OSError as exc:
            self.log.error("failed to stat file: %s", exc)
            return
        digest = hashlib.md5(usedforsecurity=False)
        try:
            for chunk in iter(lambda: handle.read(_HASH_CHUNK), b""):
                digest.update(chunk)
        except OSError as exc:
            self.log.error("failed to hash file: %s", exc)
            return
        md5sum = digest.hexdigest()
        try:
            handle.seek(0)
        except OSError as exc:
            self.log.error("failed to seek to start: %s", exc)
            return

        file_name = os.path.basename(path)
        try:
            existing = self.repo.is_file_processed(is_add, file_name)
        except Exception as exc:
            self.log.error("failed to check processed files: %s", exc)
            return

        resume_count = 0
        record_id = str(uuid.uuid4())
        if existing is not None:
            if existing.status in ("completed", "initiated"):
                self.log.info("File %s already processed/under processing, skipping", file_name)
                return
            if existing.status == "failed" and existing.coupon_code_count > 0:
                resume_count = existing.coupon_code_count
                record_id = existing.id
                md5sum = existing.md5_hash
                size = existing.size
                self.log.info("Resuming %s from line %d", file_name, resume_count + 1)

        header_error = _gzip_header_error(handle)
        if header_error:
            self.log.error("failed to create gzip reader: %s", header_error)
            return

        with gzip.GzipFile(fileobj=handle, mode="rb") as gz:
            batcher = BatchProcessor(self.repo, is_add, file_name, self.log)
            record = ProcessedCouponFile(
                id=record_id,
                md5_hash=md5sum,
                file_name=file_name,
                size=size,
                coupon_code_count=resume_count,
                datetime=int(time.time()),
                is_add=is_add,
                status="initiated",
            )
            try:
                if resume_count > 0:
                    self.repo.update_processing_status(record.id, "initiated", resume_count)
                else:
                    self.repo.insert_processed_file(record)
            except Exception as exc:
                self.log.error("failed to record processed file: %s", exc)
                return

            status = "failed"
            total = 0
            try:
                try:
                    total = self._process_stream(
                        gz, batcher, self.config.batch_size, resume_count
                    )
                except _StreamError as exc:
                    total = exc.total
                    self.log.error("failed to process file %s: %s", file_name, exc.cause)
                    return
                self.log.info("Processed %d coupons from %s", total, file_name)
                status = "completed"
            finally:
                try:
                    self.repo.update_processing_status(record.id, status, resume_count + total)
                except Exception as exc:
                    self.log.error("failed to record processed file: %s", exc)

    def _process_stream(
        self, gz, batcher: BatchProcessor, batch_size: int, resume_count: int
    ) -> int:
        """Feed batches of codes to a pool of workers; return how many codes were handed out."""
        batches: "queue.Queue[List[str]]" = queue.Queue(maxsize=_QUEUE_DEPTH)
        errors: "queue.Queue[BaseException]" = queue.Queue(maxsize=1)
        finished = threading.Event()
        stop = self._stop

        def worker(worker_id: int) -> None:
            while True:
                try:
                    codes = batches.get(timeout=_POLL)
                except queue.Empty:
                    if finished.is_set():
                        return
                    continue
                if stop.is_set():
                    return
                try:
                    batcher.process_batch(codes)
                except Exception as exc:
                    try:
                        errors.put_nowait(
                            RuntimeError(f"worker {worker_id} failed to process batch: {exc}")
                        )
                    except queue.Full:
                        pass
                    return

        def send(codes: List[str], failure_message: str) -> None:
            while True:
                if stop.is_set():
                    raise _Cancelled()
                try:
                    err = errors.get_nowait()
                except queue.Empty:
                    pass
                else:
                    self.log.error(failure_message, err)
                    raise err
                try:
                    batches.put(codes, timeout=_POLL)
                    return
                except queue.Full:
                    continue

        threads = [
            threading.Thread(target=worker, args=(worker_id,), daemon=True)
            for worker_id in range(_WORKERS)
        ]
        for thread in threads:
            thread.start()

        total = 0
        codes: List[str] = []
        try:
            for line_num, line in enumerate(_lines(gz), start=1):
                if resume_count > 0 and line_num <= resume_count:
                    continue
                if not line:
                    continue
                codes.append(line)
                if len(codes) >= batch_size:
                    send(codes, "failed to process batch: %s")
                    total += len(codes)
                    codes = []
            if codes:
                send(codes, "failed to process final batch: %s")
                total += len(codes)

            finished.set()
            for thread in threads:
                thread.join()
            try:
                err = errors.get_nowait()
            except queue.Empty:
                return total
            self.log.error("failed to process batch: %s", err)
            raise err
        except Exception as exc:
            raise _StreamError(exc, total) from exc
        finally:
            finished.set()
            for thread in threads:
                thread.join()