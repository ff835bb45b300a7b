"""
Central logging for iamsync.

Sinks, all attached under the ``iamsync`` logger:
  - stderr console (INFO by default)
  - logs/app.log, rotated daily at UTC midnight (DEBUG)
  - logs/YYYY-MM-DD/<action>_<run_id>.log, one file per run (DEBUG)

Every sink carries MaskSecretsFilter, so AWS keys, passwords, bearer tokens
and Secret instances never reach a handler in clear text. Timestamps are UTC.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from .models import REDACTED, Secret

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s account=%(account)s | %(message)s"
)
CONTEXT_FIELDS = ("run_id", "action", "account")


class MaskSecretsFilter(logging.Filter):
    """Scrub credentials from the message template and from %-style args."""

    _patterns = [
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(aws_secret_access_key\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\bsecret\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"()(\b(?:AKIA|ASIA)[A-Z0-9]{16}\b)"),
    ]

    @classmethod
    def scrub(cls, text: str) -> str:
        for pat in cls._patterns:
            text = pat.sub(r"\1" + REDACTED, text)
        return text

    def _scrub_arg(self, value: Any) -> Any:
        if isinstance(value, Secret):
            return REDACTED
        return self.scrub(value) if isinstance(value, str) else value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = {k: self._scrub_arg(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._scrub_arg(a) for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self.scrub(record.msg)
        return True


class _ContextDefaults(logging.Filter):
    """Module loggers bypass the adapter; give their records placeholder context."""

    def filter(self, record: logging.LogRecord) -> bool:
        for attr in CONTEXT_FIELDS:
            if not hasattr(record, attr):
                setattr(record, attr, "-")
        return True


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _formatter() -> logging.Formatter:
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    fmt.converter = time.gmtime  # type: ignore[attr-defined]
    return fmt


def _prepare(
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
    filters: Sequence[logging.Filter],
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    for f in filters:
        handler.addFilter(f)
    return handler


def _drop_handlers(logger: logging.Logger, stale: Callable[[logging.Handler], bool]) -> None:
    for h in list(logger.handlers):
        if stale(h):
            logger.removeHandler(h)
            h.close()


def _is_console(h: logging.Handler) -> bool:
    return isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)


def _is_rotating(h: logging.Handler) -> bool:
    return isinstance(h, logging.handlers.TimedRotatingFileHandler)


def _attach_base_sinks(
    base: logging.Logger,
    *,
    base_dir: str,
    console_level: str,
    file_level: str,
    formatter: logging.Formatter,
    filters: Sequence[logging.Filter],
) -> None:
    # Console: always rebuilt so it follows the current sys.stderr.
    _drop_handlers(base, _is_console)
    base.addHandler(
        _prepare(logging.StreamHandler(stream=sys.stderr), _level(console_level, logging.INFO), formatter, filters)
    )

    # app.log: kept across calls unless base_dir moved.
    os.makedirs(base_dir, exist_ok=True)
    app_log = os.path.abspath(os.path.join(base_dir, "app.log"))
    Path(app_log).touch(exist_ok=True)
    _drop_handlers(base, lambda h: _is_rotating(h) and os.path.abspath(h.baseFilename) != app_log)
    if not any(_is_rotating(h) for h in base.handlers):
        rotating = logging.handlers.TimedRotatingFileHandler(
            app_log, when="midnight", backupCount=14, encoding="utf-8", utc=True
        )
        base.addHandler(_prepare(rotating, _level(file_level, logging.DEBUG), formatter, filters))


def _attach_run_file(
    logger: logging.Logger,
    *,
    path: str,
    file_level: str,
    formatter: logging.Formatter,
    filters: Sequence[logging.Filter],
) -> None:
    if getattr(logger, "_iamsync_run_file", None) == path:
        return
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    logger.addHandler(_prepare(handler, _level(file_level, logging.DEBUG), formatter, filters))
    logger._iamsync_run_file = path  # type: ignore[attr-defined]


def build_logger(
    *,
    name: str = "iamsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure the ``name`` logger tree and return an adapter for this run.

    Module loggers (``iamsync.core.*``) propagate into the base sinks. The
    returned adapter logs through ``<name>.<action>.<run_id>``, which also
    owns the per-run file, and stamps run_id, action and account on records.
    """
    formatter = _formatter()
    filters = (_ContextDefaults(), MaskSecretsFilter())

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _attach_base_sinks(
        base,
        base_dir=base_dir,
        console_level=console_level,
        file_level=file_level,
        formatter=formatter,
        filters=filters,
    )

    run_logger = logging.getLogger(f"{name}.{action}.{run_id}")
    run_logger.setLevel(logging.DEBUG)
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    _attach_run_file(
        run_logger,
        path=os.path.join(base_dir, day, f"{action}_{run_id}.log"),
        file_level=file_level,
        formatter=formatter,
        filters=filters,
    )

    context = {"run_id": run_id, "action": action, "account": (extra or {}).get("account") or "-"}
    adapter = logging.LoggerAdapter(run_logger, context)
    adapter.debug("Logger initialised")
    return adapter


def bind_context(adapter: logging.LoggerAdapter, **fields: Any) -> logging.LoggerAdapter:
    """Update context fields (e.g. ``account`` once known) on an adapter from build_logger."""
    for key, value in fields.items():
        if key not in CONTEXT_FIELDS:
            raise ValueError(f"Unknown log context field: {key}")
        adapter.extra[key] = value or "-"  # type: ignore[index]
    return adapter
