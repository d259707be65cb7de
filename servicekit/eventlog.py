"""Hourly-rotated JSON-lines event log with buffered, background flushing."""

from __future__ import annotations

import json
import logging
import math
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Any

from servicekit.config import ConfigError

DEFAULT_FLUSH_THRESHOLD = 1000
DEFAULT_FLUSH_PERIOD = 5  # minutes

_HOUR_FORMAT = "%y_%m_%d__%H"
_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)

_logger = logging.getLogger(__name__)


def _sort_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sort_keys(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_sort_keys(item) for item in value]
    return value


def _normalise_numbers(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _normalise_numbers(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalise_numbers(item) for item in value]
    if isinstance(value, float) and math.isfinite(value):
        if value.is_integer() and abs(value) < 1e21:
            return int(value)
    return value


def _encode(value: Any) -> str:
    text = json.dumps(
        _normalise_numbers(value),
        ensure_ascii=False,
        allow_nan=False,
        separators=(",", ":"),
    )
    for char, escape in _JSON_ESCAPES:
        text = text.replace(char, escape)
    return text


@dataclass
class UserEvent:
    event_type: str = ""
    metadata: dict[str, Any] | None = None
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventType": self.event_type,
            "metadata": None if self.metadata is None else _sort_keys(self.metadata),
            "count": self.count,
        }


@dataclass
class RequestCommon:
    micro_timestamp: float = 0.0
    visitor_id: str = ""
    is_new_visitor: bool = False
    user_name: str = ""
    user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "microTimestamp": self.micro_timestamp,
            "visitorId": self.visitor_id,
            "isNewVisitor": self.is_new_visitor,
            "userName": self.user_name,
            "userId": self.user_id,
        }


@dataclass
class RequestEvent:
    request_common: RequestCommon | None = None
    user_events: list[UserEvent | None] | None = None

    def to_dict(self) -> dict[str, Any]:
        events = None
        if self.user_events is not None:
            events = [None if e is None else e.to_dict() for e in self.user_events]
        return {
            "requestCommon": (
                None if self.request_common is None else self.request_common.to_dict()
            ),
            "userEvents": events,
        }


def _config_int(config: Any, key: str, default: int) -> int:
    try:
        value = config.get(key)
    except ConfigError:
        return default
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


class EventLog:
    """Buffers request events and appends them as JSON lines to one file per hour."""

    def __init__(self, log_dir: str, config: Any) -> None:
        self.log_dir = log_dir
        self.flush_threshold = _config_int(
            config, "LOG_FLUSH_THRESHOLD", DEFAULT_FLUSH_THRESHOLD
        )
        self.flush_period = _config_int(config, "LOG_FLUSH_PERIOD", DEFAULT_FLUSH_PERIOD)
        if self.flush_period <= 0:
            raise ValueError("LOG_FLUSH_PERIOD must be a positive number of minutes")

        self._config = config
        self._current_hour = ""
        self._file: IO[str] | None = None
        self._buffer: list[str] = []
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._closing = threading.Event()
        self._thread = threading.Thread(
            target=self._flush_loop, name="eventlog-flush", daemon=True
        )
        self._thread.start()

    def write_log(self, log_name: str, request_event: RequestEvent | None) -> None:
        """Queue one event; it reaches the hourly file on the next flush."""
        if self._closing.is_set():
            raise ValueError("write to closed event log")
        current_hour = datetime.now().strftime(_HOUR_FORMAT)

        with self._lock:
            if self._current_hour != current_hour:
                self._flush()
                if self._file is not None:
                    self._file.close()
                path = os.path.join(self.log_dir, current_hour + ".log")
                try:
                    self._file = open(path, "a", encoding="utf-8")
                except OSError as exc:
                    _logger.error("Failed to open log file: %s", exc)
                    self._file = None
                    return
                self._current_hour = current_hour

            payload = None if request_event is None else request_event.to_dict()
            try:
                line = _encode(payload)
            except (TypeError, ValueError) as exc:
                _logger.error("Failed to encode event to JSON: %s", exc)
                return

            self._buffer.append(line)
            if len(self._buffer) >= self.flush_threshold:
                self._wakeup.set()

    def _flush(self) -> None:
        if not self._buffer or self._file is None:
            return
        for entry in self._buffer:
            try:
                self._file.write(entry + "\n")
            except OSError as exc:
                _logger.error("Failed to write log entry: %s", exc)
        try:
            self._file.flush()
        except OSError as exc:
            _logger.error("Failed to write log entry: %s", exc)
        self._buffer.clear()

    def _flush_loop(self) -> None:
        period = self.flush_period * 60
        while True:
            self._wakeup.wait(timeout=period)
            self._wakeup.clear()
            with self._lock:
                self._flush()
                if self._closing.is_set():
                    if self._file is not None:
                        self._file.close()
                        self._file = None
                    return

    def close(self) -> None:
        """Flush what is buffered, close the file and stop the background thread."""
        self._closing.set()
        self._wakeup.set()
        self._thread.join()

    def __enter__(self) -> EventLog:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_event_log(
    config: Any, root_dir: str | None = None, pod_name: str | None = None
) -> EventLog | None:
    """Create an event log under *root_dir*/logs/*pod_name*, or None if impossible.

    Missing arguments come from the APP_ROOT and K8S_POD_NAME environment variables.
    """
    if root_dir is None:
        root_dir = os.environ.get("APP_ROOT", "")
    if pod_name is None:
        pod_name = os.environ.get("K8S_POD_NAME", "")

    full_dir = os.path.join(root_dir, "logs", pod_name) if pod_name else root_dir
    if not full_dir:
        _logger.warning("ROOT_DIR is not set. Logs will not be stored.")
        return None

    try:
        os.makedirs(full_dir, exist_ok=True)
    except OSError as exc:
        _logger.error("Failed to create log directory: %s", exc)
        return None

    return EventLog(full_dir, config)