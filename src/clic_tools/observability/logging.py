"""
clic-tools — structured logging

File: src/clic_tools/observability/logging.py
Last updated: 2026-10-19

Purpose
- One JSON-lines log file per CLI session under ``<log_dir>/<session_id>/``.
- structlog events from the storage layer and plain stdlib records share the sink.

What should be included in this file
- ``LoggingConfig`` and ``setup_structured_logging`` / ``setup_logging``.
- ``correlation_scope(module_id=..., db_file=...)`` backed by structlog contextvars.
- Redaction of credentials, bcrypt hashes and Telegram bot tokens.

Functional requirements
- Callers never block on disk I/O: records go through a bounded queue and are
  counted, not written, when the queue is full.
- Correlation fields are captured on the calling thread, before the record is queued.

Non-functional requirements
- At most one session is active per process; a new setup closes the previous one.
"""

from __future__ import annotations

import atexit
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

LogRedactor = Callable[[Any], Any]

LOG_FILENAME: Final[str] = "clic_tools.jsonl"
ROOT_LOGGER_NAME: Final[str] = "clic_tools"
CORRELATION_KEYS: Final[tuple[str, ...]] = ("module_id", "db_file")

_REDACTED: Final[str] = "***REDACTED***"
_SENSITIVE_KEY_PARTS: Final[tuple[str, ...]] = (
    "password",
    "passphrase",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
)
_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(password|secret|api[_-]?key|bot[_-]?token|token|authorization)(\s*[:=]\s*)[^\s,;]+"
)
_SECRET_VALUE_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {_REDACTED}"),
    (re.compile(r"\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}"), _REDACTED),
    (re.compile(r"\b\d{6,12}:[A-Za-z0-9_-]{30,}\b"), _REDACTED),
)

# Attribute names every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_active_lock = threading.Lock()
_active_session: LogSession | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one logging session; validated on construction."""

    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_to_stdout: bool = False
    redact_secrets: bool = True

    def __post_init__(self) -> None:
        session_id = self.session_id.strip() if isinstance(self.session_id, str) else ""
        if not session_id:
            raise ValueError("session_id must not be empty")
        if Path(session_id).name != session_id or session_id in {".", ".."}:
            raise ValueError(f"session_id {session_id!r} must not contain path separators")
        if not isinstance(self.logger_name, str) or not self.logger_name.strip():
            raise ValueError("logger_name must not be empty")
        if isinstance(self.queue_size, bool) or not isinstance(self.queue_size, int):
            raise ValueError("queue_size must be an integer")
        if self.queue_size <= 0:
            raise ValueError(f"queue_size must be positive, got {self.queue_size}")
        object.__setattr__(self, "session_id", session_id)
        object.__setattr__(self, "level", _level_number(self.level))

    @property
    def log_path(self) -> Path:
        return Path(self.base_log_dir) / self.session_id / LOG_FILENAME


class LogSession:
    """An active queue, listener and sink set; closed by :func:`shutdown_logging`."""

    def __init__(
        self,
        config: LoggingConfig,
        logger: logging.Logger,
        queue_handler: _CorrelatingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: list[logging.Handler],
    ) -> None:
        self.config = config
        self.logger = logger
        self.log_path = config.log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def session_id(self) -> str:
        return self.config.session_id

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.logger.removeHandler(self._queue_handler)
            # stop() drains whatever is still queued before joining the thread.
            self._listener.stop()
            for sink in self._sinks:
                sink.close()


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        prepared: logging.LogRecord = super().prepare(record)
        for key, value in get_correlation_context().items():
            if getattr(prepared, key, None) is None:
                setattr(prepared, key, value)
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, session_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._redact(record.getMessage()),
            "session_id": self._session_id,
        }
        fields: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            if key in CORRELATION_KEYS:
                if value is not None:
                    line[key] = str(value)
                continue
            fields[key] = _jsonable(value)
        if fields:
            line["fields"] = self._redact(fields)
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def setup_structured_logging(config: LoggingConfig) -> LogSession:
    """Start a session writing ``config.log_path``; any previous session is shut down."""

    shutdown_logging()
    config.log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _JsonLineFormatter(
        config.session_id, default_log_redactor if config.redact_secrets else _unredacted
    )
    sinks: list[logging.Handler] = [logging.FileHandler(config.log_path, encoding="utf-8")]
    if config.log_to_stdout:
        # stdout carries command output; the console sink is stderr.
        sinks.append(logging.StreamHandler(sys.stderr))
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name.strip())
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(config.level)
    logger.propagate = False

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks)
    listener.start()
    logger.addHandler(queue_handler)

    session = LogSession(config, logger, queue_handler, listener, sinks)
    global _active_session, _atexit_registered
    with _active_lock:
        _active_session = session
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return session


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = ROOT_LOGGER_NAME,
) -> logging.Logger:
    """Start logging from the ``[observability]`` config section and route structlog into it."""

    cfg = dict(observability_config or {})
    base_log_dir = log_dir if log_dir is not None else cfg.get("log_dir", "logs")
    session = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=base_log_dir if isinstance(base_log_dir, (str, Path)) else "logs",
            logger_name=logger_name,
            level=str(cfg.get("log_level", "INFO")),
            log_to_stdout=bool(cfg.get("log_to_stdout", False)),
            redact_secrets=bool(cfg.get("redact_secrets", True)),
        )
    )
    configure_structlog()
    return session.logger


def configure_structlog() -> None:
    """Send ``structlog.get_logger(__name__)`` events through stdlib ``logging``.

    The event name becomes the message and keyword fields become ``extra``, so
    bound ``module_id``/``db_file`` context lands at the top of the JSON line.
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(session: LogSession | None = None) -> None:
    """Drain and close ``session`` (default: the active one)."""

    global _active_session
    with _active_lock:
        target = session if session is not None else _active_session
        if target is not None and target is _active_session:
            _active_session = None
    if target is not None:
        target.shutdown()


def get_active_logging_handle() -> LogSession | None:
    with _active_lock:
        return _active_session


def get_correlation_context() -> dict[str, str]:
    bound = structlog.contextvars.get_contextvars()
    return {key: bound[key] for key in CORRELATION_KEYS if bound.get(key) is not None}


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind ``module_id``/``db_file`` for everything logged in scope.

    A ``None`` value hides an outer binding for the duration of the scope.
    """

    unknown = sorted(set(fields) - set(CORRELATION_KEYS))
    if unknown:
        raise ValueError(f"unknown correlation field(s): {', '.join(unknown)}")
    outer = get_correlation_context()
    structlog.contextvars.unbind_contextvars(*fields)
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in fields.items() if value}
    )
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*fields)
        structlog.contextvars.bind_contextvars(
            **{key: outer[key] for key in fields if key in outer}
        )


def default_log_redactor(value: Any) -> Any:
    """Mask sensitive keys at any depth and secret-looking substrings in text."""

    if isinstance(value, str):
        masked = _ASSIGNMENT_PATTERN.sub(rf"\g<1>\g<2>{_REDACTED}", value)
        for pattern, replacement in _SECRET_VALUE_PATTERNS:
            masked = pattern.sub(replacement, masked)
        return masked
    if isinstance(value, Mapping):
        return {
            key: _REDACTED if _is_sensitive_key(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    return value


def _is_sensitive_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def _unredacted(value: Any) -> Any:
    return value


def _level_number(level: int | str) -> int:
    if isinstance(level, int) and not isinstance(level, bool):
        return level
    if isinstance(level, str):
        number = logging.getLevelNamesMapping().get(level.strip().upper())
        if number is not None:
            return number
    raise ValueError(f"unsupported logging level {level!r}")


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=repr)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


__all__ = [
    "CORRELATION_KEYS",
    "LogRedactor",
    "LogSession",
    "LoggingConfig",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
