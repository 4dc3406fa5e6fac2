"""Logging setup shared by the CLI and the library code.

Modules log through :func:`get_logger`, which places them under the
``emuident`` logger. Output is decided by the application: the console
handler installed by :func:`configure_logging` and, per collection, the log
file installed by :func:`attach_log_file`. Workflows tag their lines with a
correlation id, which :class:`JsonFormatter` embeds in each record.
"""

from __future__ import annotations

import contextvars
import functools
import json
import logging
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Optional

from emuident.config import LOG_FILENAME

PACKAGE_LOGGER = "emuident"

_STD_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

_REDACT_DEFAULT = ("password", "api_key", "apikey", "token", "secret")

_CONSOLE_HANDLER = "emuident_console"


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    if not name.startswith(PACKAGE_LOGGER):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def attach_log_file(base_dir: Path) -> Optional[logging.FileHandler]:
    """Also write package logs to ``emuident.log`` under ``base_dir``.

    At most one log file is attached; one for another directory is closed
    and replaced. Returns ``None`` when the file cannot be opened.
    """
    package = logging.getLogger(PACKAGE_LOGGER)
    path = Path(base_dir).expanduser().resolve() / LOG_FILENAME
    for handler in list(package.handlers):
        if isinstance(handler, logging.FileHandler):
            if Path(handler.baseFilename) == path:
                return handler
            package.removeHandler(handler)
            handler.close()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(str(path), encoding="utf-8")
    except OSError as e:
        package.warning("Could not open log file under %s: %s", base_dir, e)
        return None
    handler.setFormatter(logging.Formatter(_STD_FORMAT))
    package.addHandler(handler)
    return handler


_cid_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "emuident_correlation_id", default=None
)


def set_correlation_id(cid: str | None = None) -> str:
    """Set (or generate) the correlation id of the current context."""
    if cid is None:
        cid = uuid.uuid4().hex
    _cid_var.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _cid_var.get()


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the correlation id when one is set."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        cid = get_correlation_id()
        if cid:
            payload["correlation_id"] = cid
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _redact(obj, keys=_REDACT_DEFAULT):
    if isinstance(obj, dict):
        return {
            k: "***REDACTED***" if isinstance(k, str) and k.lower() in keys else _redact(v, keys)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return type(obj)(_redact(x, keys) for x in obj)
    return obj


def log_call(level: int = logging.INFO):
    """Log entry (secrets redacted), duration and result of a batch entry point."""

    def _decorator(func):
        @functools.wraps(func)
        def _wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__)
            start = time.perf_counter()
            logger.debug("Entering %s; args=%s kwargs=%s", func.__qualname__, _redact(args), _redact(kwargs))
            try:
                result = func(*args, **kwargs)
            except Exception:
                logger.exception(
                    "Exception in %s after %.2fms", func.__qualname__, (time.perf_counter() - start) * 1000
                )
                raise
            logger.log(
                level,
                "Exited %s; duration_ms=%.2f; return=%s",
                func.__qualname__,
                (time.perf_counter() - start) * 1000,
                repr(result)[:100],
            )
            return result

        return _wrapper

    return _decorator


def configure_logging(env: Optional[str] = "auto", level: int = logging.INFO) -> logging.Logger:
    """Install the console handler on the root logger.

    ``env`` is ``auto`` (human output on a TTY, JSON otherwise), ``json`` or
    ``human``; the ``EMUIDENT_LOG_FORMAT`` environment variable wins over it.
    Calling it again only changes the level.
    """
    chosen = (os.getenv("EMUIDENT_LOG_FORMAT") or env or "auto").lower()
    if chosen in ("json", "human"):
        mode = chosen
    else:
        try:
            mode = "human" if sys.stdout.isatty() else "json"
        except (AttributeError, ValueError):
            mode = "json"

    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(h, "name", None) == _CONSOLE_HANDLER for h in root.handlers):
        handler = logging.StreamHandler()
        handler.name = _CONSOLE_HANDLER
        if mode == "json":
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(_STD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
    return root
