"""Central logging configuration for the EventHub backend.

Usage: from .logging_config import configure_logging; configure_logging()

Writes structured key=value logs to stdout (suitable for Docker). Set
LOG_JSON=true for one JSON object per line instead.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Optional

# Loggers used by the registration core and its collaborators
DOMAIN_LOGGERS = ("registrations", "capacity", "counters", "notifications", "email", "request")

_RESERVED_ATTRS = {
    "args", "msg", "message", "exc_info", "exc_text", "stack_info", "lineno", "pathname",
    "filename", "module", "created", "msecs", "relativeCreated", "funcName", "thread",
    "threadName", "processName", "process", "levelno", "levelname", "name", "asctime",
    "taskName",
}


def _utc_timestamp(record: logging.LogRecord) -> str:
    dt = datetime.fromtimestamp(record.created, timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}+00:00"


class KeyValueFormatter(logging.Formatter):
    """Minimal key=value structured formatter.

    Example output:
        2026-03-01T12:00:00.123+00:00 INFO registrations registration.created rid=... request_id=...
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        record.asctime = _utc_timestamp(record)
        extras = []
        for key in ("request_id", "client_ip", "path", "method"):
            val = getattr(record, key, None)
            if val is not None:
                extras.append(f"{key}={val}")
        msg = super().format(record)
        extras_s = " " + " ".join(extras) if extras else ""
        return f"{record.asctime} {record.levelname} {record.name} {msg}{extras_s}"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base = {
            "ts": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for k, v in record.__dict__.items():
            if k.startswith('_') or k in _RESERVED_ATTRS:
                continue
            if isinstance(v, (str, int, float, bool)) or v is None:
                base.setdefault(k, v)
        if record.exc_info and record.exc_info[0]:
            base["exc_type"] = record.exc_info[0].__name__
        return json.dumps(base, ensure_ascii=False)


class PiiMaskFilter(logging.Filter):
    """Mask email local parts and phone numbers before records leave the process."""

    _email_re = re.compile(r"([a-zA-Z0-9_.+-]{1,3})[a-zA-Z0-9_.+-]*@([a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+)")
    # ISO dates (2026-10-26 14:57) share the digit-dash shape and stay readable
    _phone_re = re.compile(r"(?<![\w\-])(?!\d{4}-\d{2}-\d{2})(\+?[0-9][0-9\-\s]{6,}[0-9])(?!\d)")

    def mask(self, s: str) -> str:
        s = self._email_re.sub(lambda m: f"{m.group(1)}***@{m.group(2)}", s)
        return self._phone_re.sub("***REDACTED_PHONE***", s)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
            elif isinstance(record.args, dict):
                record.args = {k: self.mask(v) if isinstance(v, str) else v for k, v in record.args.items()}
        return True


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in {"1", "true", "yes"}


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root & domain loggers idempotently.

    - LEVEL from LOG_LEVEL env (default INFO)
    - LOG_JSON=true switches to JsonFormatter
    - NOISY_LOG_LEVEL tames third-party loggers (default WARNING)
    """
    if getattr(configure_logging, "_configured", False):  # type: ignore[attr-defined]
        return

    log_level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(log_level)
    if not getattr(root, "_eh_custom", False):
        for h in list(root.handlers):
            root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stdout)
    formatter: logging.Formatter
    if _env_bool("LOG_JSON", False):
        formatter = JsonFormatter()
    else:
        formatter = KeyValueFormatter("%(message)s")
    handler.setFormatter(formatter)
    handler.addFilter(PiiMaskFilter())
    root.addHandler(handler)
    root._eh_custom = True  # type: ignore[attr-defined]

    for noisy in ("uvicorn", "httpx", "asyncio", "pymongo"):
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING").upper())

    for name in DOMAIN_LOGGERS:
        logging.getLogger(name).propagate = True

    configure_logging._configured = True  # type: ignore[attr-defined]


__all__ = ["configure_logging", "KeyValueFormatter", "JsonFormatter", "PiiMaskFilter"]
