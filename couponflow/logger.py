"""Levelled logger writing formatted lines to stdout and/or a log file."""

from __future__ import annotations

import enum
import inspect
import os
import re
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from .file_writer import FileWriter

_RESET = "\033[0m"


class LogLevel(enum.IntEnum):
    """Severity of a log message."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    FATAL = 4

    def label(self) -> str:
        return self.name

    def color(self) -> str:
        return _COLORS[self]


_COLORS = {
    LogLevel.DEBUG: "\033[36m",
    LogLevel.INFO: "\033[32m",
    LogLevel.WARN: "\033[33m",
    LogLevel.ERROR: "\033[31m",
    LogLevel.FATAL: "\033[35m",
}


def level_name(value: int) -> str:
    """Name of a level, or ``UNKNOWN`` for values outside the known range."""
    try:
        return LogLevel(value).label()
    except ValueError:
        return "UNKNOWN"


def level_color(value: int) -> str:
    """ANSI colour for a level, or the reset code for unknown values."""
    try:
        return LogLevel(value).color()
    except ValueError:
        return _RESET


class FileWriterType(enum.Enum):
    """Kinds of file output the logger can use."""

    NONE = "none"
    SIMPLE = "simple"
    ROTATING = "rotating"


@dataclass
class LogConfig:
    """Logger settings."""

    version: str = ""
    commit: str = ""
    output_to_file: bool = False
    output_to_stdio: bool = True
    log_file_path: str = ""
    log_dir: str = "/logs"
    file_writer_type: str = "simple"
    level: LogLevel = LogLevel.INFO
    include_timestamp: bool = True
    include_level: bool = True
    include_caller: bool = False
    use_colors: bool = True
    timestamp_format: str = "2006-01-02 15:04:05.000"
    log_format: str = "[{timestamp}] [{level}] [{version}-{commit}] {message}"
    buffer_size: int = 1024
    flush_interval: timedelta = field(default_factory=lambda: timedelta(seconds=5))


def default_log_config() -> LogConfig:
    """Return a fresh configuration holding the default settings."""
    return LogConfig()


class LoggerError(Exception):
    """Raised when a logger cannot be set up."""


def replace_placeholder(template: str, placeholder: str, value: str) -> str:
    """Replace every occurrence of ``placeholder`` in ``template``."""
    return template.replace(placeholder, value)


def get_caller() -> str:
    """Describe the first frame outside this module as ``file:line [function]``."""
    frame = inspect.currentframe()
    try:
        frame = frame.f_back if frame is not None else None
        while frame is not None and frame.f_code.co_filename == __file__:
            frame = frame.f_back
        if frame is None:
            return "unknown"
        code = frame.f_code
        return f"{os.path.basename(code.co_filename)}:{frame.f_lineno} [{code.co_name}]"
    finally:
        del frame


_LAYOUT_TOKENS = re.compile(
    r"January|Monday|2006|Z07:00|Z0700|-07:00|-0700|MST|Jan|Mon"
    r"|[.,]0+|[.,]9+|_2|15|06|01|02|03|04|05|PM|pm|1|2|3|4|5"
)


def _zone(moment: datetime, token: str) -> str:
    aware = moment if moment.tzinfo is not None else moment.astimezone()
    offset = aware.utcoffset() or timedelta(0)
    if token.startswith("Z") and offset == timedelta(0):
        return "Z"
    total = int(offset.total_seconds()) // 60
    sign = "-" if total < 0 else "+"
    hours, minutes = divmod(abs(total), 60)
    separator = ":" if ":" in token else ""
    return f"{sign}{hours:02d}{separator}{minutes:02d}"


def _hour12(hour: int) -> int:
    return hour % 12 or 12


def format_timestamp(moment: datetime, layout: str) -> str:
    """Format ``moment`` using a reference-time layout such as ``2006-01-02 15:04:05``."""

    def render(match: re.Match) -> str:
        token = match.group(0)
        if token[0] in ".," and len(token) > 1:
            digits = f"{moment.microsecond * 1000:09d}"[: len(token) - 1]
            if token[1] == "9":
                digits = digits.rstrip("0")
                return f"{token[0]}{digits}" if digits else ""
            return token[0] + digits
        if token in ("Z07:00", "Z0700", "-07:00", "-0700"):
            return _zone(moment, token)
        simple = {
            "January": lambda: moment.strftime("%B"),
            "Monday": lambda: moment.strftime("%A"),
            "Jan": lambda: moment.strftime("%b"),
            "Mon": lambda: moment.strftime("%a"),
            "2006": lambda: f"{moment.year:04d}",
            "06": lambda: f"{moment.year % 100:02d}",
            "01": lambda: f"{moment.month:02d}",
            "1": lambda: str(moment.month),
            "02": lambda: f"{moment.day:02d}",
            "_2": lambda: f"{moment.day:2d}",
            "2": lambda: str(moment.day),
            "15": lambda: f"{moment.hour:02d}",
            "03": lambda: f"{_hour12(moment.hour):02d}",
            "3": lambda: str(_hour12(moment.hour)),
            "04": lambda: f"{moment.minute:02d}",
            "4": lambda: str(moment.minute),
            "05": lambda: f"{moment.second:02d}",
            "5": lambda: str(moment.second),
            "PM": lambda: "PM" if moment.hour >= 12 else "AM",
            "pm": lambda: "pm" if moment.hour >= 12 else "am",
            "MST": lambda: (moment if moment.tzinfo else moment.astimezone()).tzname() or "",
        }
        return simple[token]()

    return _LAYOUT_TOKENS.sub(render, layout)


@dataclass
class _LogEntry:
    level: LogLevel
    message: str
    time: datetime
    caller: str


class Logger:
    """Writes levelled, formatted log lines to stdout and/or a file."""

    def __init__(self, config: LogConfig) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._file_writer: Optional[FileWriter] = None
        if config.output_to_file:
            try:
                self._init_file_writer()
            except (LoggerError, OSError) as exc:
                raise LoggerError(f"failed to initialize file writer: {exc}") from exc

    def _init_file_writer(self) -> None:
        try:
            os.makedirs(self.config.log_dir, mode=0o750, exist_ok=True)
        except OSError as exc:
            raise LoggerError(f"failed to create log directory: {exc}") from exc

        if not self.config.log_file_path:
            stamp = datetime.now().strftime("%Y-%m-%d")
            self.config.log_file_path = os.path.join(self.config.log_dir, f"app-{stamp}.log")

        kind = self.config.file_writer_type
        if kind == FileWriterType.SIMPLE.value:
            try:
                self._file_writer = FileWriter(self.config.log_file_path)
            except OSError as exc:
                raise LoggerError(f"failed to create simple file writer: {exc}") from exc
        elif kind != FileWriterType.NONE.value:
            raise LoggerError(f"unknown file writer type: {kind}")

    @property
    def file_writer(self) -> Optional[FileWriter]:
        """The underlying file writer, if file output is enabled."""
        return self._file_writer

    @property
    def level(self) -> LogLevel:
        with self._lock:
            return self.config.level

    @level.setter
    def level(self, value: LogLevel) -> None:
        with self._lock:
            self.config.level = LogLevel(value)

    def is_level_enabled(self, level: LogLevel) -> bool:
        return level >= self.level

    def _format(self, entry: _LogEntry) -> str:
        config = self.config
        if not config.version:
            config.version = "0.1.0"
        text = config.log_format
        text = replace_placeholder(text, "{version}", config.version)
        text = replace_placeholder(text, "{commit}", config.commit)
        if config.include_timestamp:
            text = replace_placeholder(
                text, "{timestamp}", format_timestamp(entry.time, config.timestamp_format)
            )
        if config.include_level:
            label = entry.level.label()
            if config.use_colors:
                label = entry.level.color() + label + _RESET
            text = replace_placeholder(text, "{level}", label)
        if config.include_caller:
            text = replace_placeholder(text, "{caller}", entry.caller)
        return replace_placeholder(text, "{message}", entry.message)

    def _write(self, entry: _LogEntry) -> None:
        if entry.level < self.config.level:
            return
        line = self._format(entry)
        with self._lock:
            if self.config.output_to_stdio:
                try:
                    print(line, file=sys.stdout)
                except OSError as exc:
                    print(f"Error writing to stdio: {exc}", file=sys.stderr)
            if self.config.output_to_file and self._file_writer is not None:
                try:
                    self._file_writer.write((line + "\n").encode("utf-8"))
                except OSError as exc:
                    print(f"Error writing to log file: {exc}", file=sys.stderr)

    def _log(self, level: LogLevel, message: str, args: tuple) -> None:
        text = str(message) % args if args else str(message)
        caller = get_caller() if self.config.include_caller else ""
        self._write(_LogEntry(level, text, datetime.now(), caller))

    def debug(self, message: str, *args) -> None:
        self._log(LogLevel.DEBUG, message, args)

    def info(self, message: str, *args) -> None:
        self._log(LogLevel.INFO, message, args)

    def warn(self, message: str, *args) -> None:
        self._log(LogLevel.WARN, message, args)

    def error(self, message: str, *args) -> None:
        self._log(LogLevel.ERROR, message, args)

    def fatal(self, message: str, *args) -> None:
        """Log at FATAL level and exit with status 1."""
        self._log(LogLevel.FATAL, message, args)
        sys.exit(1)

    def close(self) -> None:
        """Flush and close the file output, if any."""
        if self._file_writer is None:
            return
        try:
            self._file_writer.flush()
        except OSError as exc:
            print(f"Error flushing file writer: {exc}", file=sys.stderr)
        self._file_writer.close()

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, *args) -> None:
        if self._file_writer is None or not self._file_writer.closed:
            self.close()