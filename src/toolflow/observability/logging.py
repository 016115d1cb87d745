"""
Structured logging for toolflow with run ID support.

Every line is a single key=value record:

    t=<iso> level=INFO run=<run id> mod=flow op=run msg="..." step=draft round=1
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable carrying the current flow run
run_id_ctx: ContextVar[str | None] = ContextVar("run_id", default=None)

_loggers: dict[str, "StructuredLogger"] = {}

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }
)

_FORMATTER_SKIP = _RESERVED_ATTRS | {"run_id", "op", "ms", "duration_ms"}


class StructuredFormatter(logging.Formatter):
    """Formats records as one key=value line with the run ID."""

    def format(self, record: logging.LogRecord) -> str:
        run_id = run_id_ctx.get() or getattr(record, "run_id", None) or "-"

        parts = record.name.split(".")
        mod = parts[-1] if parts else record.name
        op = getattr(record, "op", getattr(record, "funcName", "-"))

        duration = getattr(record, "ms", getattr(record, "duration_ms", None))
        ms_part = f" ms={duration:.1f}" if duration is not None else ""

        timestamp = datetime.now(UTC).isoformat()
        msg = record.getMessage()

        extra_fields = ""
        for key, value in record.__dict__.items():
            if key not in _FORMATTER_SKIP:
                extra_fields += f" {key}={value}"

        line = (
            f't={timestamp} level={record.levelname} run={run_id} mod={mod} op={op}'
            f'{ms_part} msg="{msg}"{extra_fields}'
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Logger that takes structured fields as keyword arguments."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info=None, **kwargs):
        # Reserved LogRecord attributes would raise KeyError in makeRecord
        extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_ATTRS}
        extra["run_id"] = run_id_ctx.get()
        self.logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, **kwargs)

    def exception(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)

    def timed(self, msg: str, duration_ms: float, **kwargs):
        """Log with timing information."""
        kwargs["ms"] = duration_ms
        self.info(msg, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO") -> None:
    """Install the structured formatter on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)


def set_run_id(run_id: str | None) -> None:
    run_id_ctx.set(run_id)


def get_run_id() -> str | None:
    return run_id_ctx.get()


def clear_run_id() -> None:
    run_id_ctx.set(None)
