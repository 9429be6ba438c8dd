"""Configuration loading from JSON or YAML files, layered over built-in defaults."""

from __future__ import annotations

import json
import logging
import math
import os
import re
import threading
from datetime import timedelta
from fractions import Fraction
from typing import Any, Dict, List, MutableMapping

import yaml

from .logger import LogConfig, LogLevel

_log = logging.getLogger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_ATOI = re.compile(r"[+-]?[0-9]+")

_DURATION_PART = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_LEVELS = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARN": LogLevel.WARN,
    "ERROR": LogLevel.ERROR,
    "FATAL": LogLevel.FATAL,
}


class ConfigError(Exception):
    """Raised when a configuration file cannot be created, read or parsed."""


def default_config() -> Dict[str, Any]:
    """Return a fresh copy of the built-in default configuration."""
    return {
        "env": "local",
        "logging": {
            "output_to_file": False,
            "output_to_stdio": True,
            "log_dir": "/logs",
            "file_writer_type": "simple",
            "level": "INFO",
            "include_timestamp": True,
            "include_level": True,
            "include_caller": False,
            "use_colors": True,
            "timestamp_format": "2006-01-02 15:04:05.000",
            "log_format": "[{timestamp}] [{level}] [{version}-{commit}] {message}",
            "buffer_size": 1024,
            "flush_interval": "5s",
        },
        "server": {
            "host": "",
            "port": 8080,
            "read_timeout": "30s",
            "write_timeout": "30s",
            "idle_timeout": "60s",
            "max_connections": 10000,
        },
        "swagger": {
            "file_path": ".",
        },
    }


def _format_value(value: Any) -> str:
    """Render a configuration value the way a plain value formatter would."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "+Inf" if value > 0 else "-Inf"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, dict):
        parts = sorted(f"{_format_value(k)}:{_format_value(v)}" for k, v in value.items())
        return "map[" + " ".join(parts) + "]"
    return str(value)


def normalize_keys(mapping: MutableMapping) -> MutableMapping:
    """Turn every key of ``mapping`` and of its nested mappings into a string, in place."""
    for key in list(mapping):
        value = mapping[key]
        if isinstance(value, dict):
            value = normalize_keys(value)
        if not isinstance(key, str):
            del mapping[key]
            mapping[_format_value(key)] = value
        else:
            mapping[key] = value
    return mapping


def merge_config(dst: MutableMapping, src: MutableMapping) -> None:
    """Merge ``src`` into ``dst``: nested mappings merge, other values overwrite."""
    for key, value in src.items():
        existing = dst.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            merge_config(existing, value)
            continue
        dst[key] = value


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"300ms"``, ``"1.5h"`` or ``"2h45m"``."""
    invalid = ValueError(f'time: invalid duration "{text}"')
    s = text
    negative = False
    if s and s[0] in "+-":
        negative = s[0] == "-"
        s = s[1:]
    if s == "0":
        return timedelta(0)
    if not s:
        raise invalid

    total = 0
    pos = 0
    while pos < len(s):
        match = _DURATION_PART.match(s, pos)
        whole, frac, unit = match.group(1), match.group(2), match.group(3)
        if not whole and not frac:
            raise invalid
        if not unit:
            raise ValueError(f'time: missing unit in duration "{text}"')
        scale = _DURATION_UNITS.get(unit)
        if scale is None:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        amount = Fraction(int(whole or "0"))
        if frac:
            amount += Fraction(int(frac), 10 ** len(frac))
        total += int(amount * scale)
        if total > _INT64_MAX + (1 if negative else 0):
            raise invalid
        pos = match.end()

    seconds, nanos = divmod(total, 1_000_000_000)
    result = timedelta(seconds=seconds, microseconds=nanos / 1000)
    return -result if negative else result


def parse_log_level(level: str) -> LogLevel:
    """Map a level name, in any case, to a LogLevel; unknown names give INFO."""
    return _LEVELS.get(str(level).upper(), LogLevel.INFO)


def _extension(path: str) -> str:
    base = path.replace(os.sep, "/").rsplit("/", 1)[-1]
    index = base.rfind(".")
    return base[index:].lower() if index >= 0 else ""


class ConfigManager:
    """Loads a configuration file and answers dotted-key lookups."""

    def __init__(self, config_path: str) -> None:
        self.config_path = os.fspath(config_path)
        self.config: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def load(self) -> None:
        """Load the file, creating it with defaults if it does not exist."""
        with self._lock:
            try:
                os.stat(self.config_path)
            except FileNotFoundError:
                try:
                    self._create_default_config()
                except ConfigError as exc:
                    raise ConfigError(f"failed to create default config: {exc}") from exc
                _log.info("Created and using default configuration file: %s", self.config_path)
                return
            except OSError:
                pass

            self.config = default_config()
            ext = _extension(self.config_path)
            if ext == ".json":
                self._load_json()
            elif ext in (".yaml", ".yml"):
                self._load_yaml()
            else:
                raise ConfigError(f"unsupported config file format: {ext}")

    def _load_json(self) -> None:
        try:
            with open(self.config_path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            raise ConfigError(f"failed to read config file: {exc}") from exc
        try:
            parsed = json.loads(data, parse_int=float)
        except ValueError as exc:
            raise ConfigError(f"failed to parse JSON config: {exc}") from exc
        if parsed is None:
            parsed = {}
        if not isinstance(parsed, dict):
            raise ConfigError(
                f"failed to parse JSON config: cannot load {type(parsed).__name__} as an object"
            )
        merge_config(self.config, parsed)
        _log.info("Loaded configuration from: %s", self.config_path)

    def _load_yaml(self) -> None:
        try:
            with open(self.config_path, "r", encoding="utf-8") as handle:
                text = handle.read()
        except OSError as exc:
            raise ConfigError(f"failed to open config file: {exc}") from exc
        try:
            documents = yaml.safe_load_all(text)
            parsed = next(documents)
        except StopIteration:
            raise ConfigError("failed to parse YAML config: EOF") from None
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse YAML config: {exc}") from exc
        if parsed is None:
            parsed = {}
        if not isinstance(parsed, dict):
            raise ConfigError(
                f"failed to parse YAML config: cannot load {type(parsed).__name__} as a mapping"
            )
        normalize_keys(parsed)
        merge_config(self.config, parsed)
        _log.info("Loaded YAML configuration from: %s", self.config_path)

    def _create_default_config(self) -> None:
        directory = os.path.dirname(self.config_path) or "."
        try:
            os.makedirs(directory, mode=0o750, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"failed to create config directory: {exc}") from exc

        self.config = default_config()
        ext = _extension(self.config_path)
        if ext == ".json":
            text = json.dumps(self.config, indent=2, sort_keys=True)
        elif ext in (".yaml", ".yml"):
            text = yaml.safe_dump(self.config, sort_keys=True, default_flow_style=False, indent=4)
        else:
            raise ConfigError(f"unsupported config file format: {ext}")
        self._write(text)

    def _write(self, text: str) -> None:
        try:
            fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
        except OSError as exc:
            raise ConfigError(f"failed to write config file: {exc}") from exc

    def get(self, key: str) -> Any:
        """Return the value at a dotted key such as ``"server.port"``, or None."""
        with self._lock:
            return self._nested_value(self.config, key.split("."))

    @staticmethod
    def _nested_value(data: Dict[str, Any], keys: List[str]) -> Any:
        current: Any = data
        for index, key in enumerate(keys):
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
            if index < len(keys) - 1 and not isinstance(current, dict):
                return None
        return current

    def get_string(self, key: str) -> str:
        """Return the value at ``key`` as text, or an empty string."""
        value = self.get(key)
        if value is None:
            return ""
        return _format_value(value)

    def get_int(self, key: str) -> int:
        """Return the value at ``key`` as an integer, or 0."""
        value = self.get(key)
        if isinstance(value, bool) or value is None:
            return 0
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value) if math.isfinite(value) else 0
        if isinstance(value, str) and _ATOI.fullmatch(value):
            number = int(value)
            if _INT64_MIN <= number <= _INT64_MAX:
                return number
        return 0

    def get_bool(self, key: str) -> bool:
        """Return the value at ``key`` as a boolean, or False."""
        value = self.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() == "true"
        if isinstance(value, int):
            return value != 0
        return False

    def get_duration(self, key: str) -> timedelta:
        """Return the value at ``key`` parsed as a duration, or zero."""
        text = self.get_string(key)
        if not text:
            return timedelta(0)
        try:
            return parse_duration(text)
        except ValueError:
            _log.warning("Invalid duration format for key %s: %s", key, text)
            return timedelta(0)

    def get_log_config(self) -> LogConfig:
        """Build logger settings from the ``logging`` section."""
        return LogConfig(
            output_to_file=self.get_bool("logging.output_to_file"),
            output_to_stdio=self.get_bool("logging.output_to_stdio"),
            log_file_path=self.get_string("logging.log_file_path"),
            log_dir=self.get_string("logging.log_dir"),
            file_writer_type=self.get_string("logging.file_writer_type"),
            level=parse_log_level(self.get_string("logging.level")),
            include_timestamp=self.get_bool("logging.include_timestamp"),
            include_level=self.get_bool("logging.include_level"),
            include_caller=self.get_bool("logging.include_caller"),
            use_colors=self.get_bool("logging.use_colors"),
            timestamp_format=self.get_string("logging.timestamp_format"),
            log_format=self.get_string("logging.log_format"),
            buffer_size=self.get_int("logging.buffer_size"),
            flush_interval=self.get_duration("logging.flush_interval"),
        )

    def __repr__(self) -> str:
        return f"ConfigManager({self.config_path!r})"