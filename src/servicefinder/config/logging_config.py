"""Logging setup for the servicefinder CLI.

Brief:
  init_logging() installs stderr, file and syslog handlers on the root logger
  from a validated LoggingConfig. Every handler carries a FinderContext
  filter, so each line names the service type being browsed.

Inputs:
  - LoggingConfig (or the equivalent mapping) and the browsed service type.

Outputs:
  - The FinderContext attached to the handlers; update its ``service_type``
    to retag later records.

Example:
    >>> ctx = init_logging({"level": "debug"}, service_type="_http._tcp.local")  # doctest: +SKIP
    >>> logging.getLogger("servicefinder").info("hello")  # doctest: +SKIP
    2026-01-01T00:00:00Z [info] _http._tcp.local servicefinder: hello
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from .config_schema import LoggingConfig, SyslogConfig

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_LEVEL_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}

LINE_FORMAT = "%(asctime)s %(level_tag)s %(service_type)s %(name)s: %(message)s"

# Placeholder until a service type is known.
NO_CONTEXT = "-"


def _stamp(record: logging.LogRecord) -> None:
    record.level_tag = _LEVEL_TAGS.get(record.levelno, f"[lvl{record.levelno}]")
    if not getattr(record, "service_type", None):
        record.service_type = NO_CONTEXT


class FinderContext(logging.Filter):
    """Handler filter that tags records with the browsed service type."""

    def __init__(self, service_type: Optional[str] = None) -> None:
        super().__init__()
        self.service_type = service_type or NO_CONTEXT

    def filter(self, record: logging.LogRecord) -> bool:
        # An explicit ``extra={"service_type": ...}`` wins.
        if not getattr(record, "service_type", None):
            record.service_type = self.service_type
        return True


class FinderLineFormatter(logging.Formatter):
    """UTC ISO-8601 timestamps, bracketed lowercase levels, service type column."""

    def __init__(self, fmt: str = LINE_FORMAT) -> None:
        super().__init__(fmt=fmt)

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        _stamp(record)
        return super().format(record)


class SyslogFormatter(logging.Formatter):
    """Syslog lines: ``tag: [level] service_type logger: message`` (no timestamp)."""

    def __init__(self, tag: str) -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        _stamp(record)
        return (
            f"{self.tag}: {record.level_tag} {record.service_type} "
            f"{record.name}: {record.getMessage()}"
        )


def _syslog_handler(cfg: LoggingConfig) -> Optional[logging.Handler]:
    if not cfg.syslog:
        return None
    opts = cfg.syslog if isinstance(cfg.syslog, SyslogConfig) else SyslogConfig()
    facility = getattr(
        logging.handlers.SysLogHandler,
        f"LOG_{opts.facility.upper()}",
        logging.handlers.SysLogHandler.LOG_USER,
    )
    handler = logging.handlers.SysLogHandler(address=opts.address, facility=facility)
    handler.setFormatter(SyslogFormatter(opts.tag or cfg.tag))
    return handler


def init_logging(
    cfg: Union[LoggingConfig, Mapping[str, Any], None],
    service_type: Optional[str] = None,
) -> FinderContext:
    """
    Brief: Replace the root logger's handlers according to ``cfg``.

    Inputs:
      - cfg: LoggingConfig, a ``logging`` mapping, or None for defaults.
      - service_type: browsed type stamped on every record.

    Outputs:
      - FinderContext shared by all installed handlers.

    Raises:
      - ValueError: when a mapping fails LoggingConfig validation.
    """
    if not isinstance(cfg, LoggingConfig):
        cfg = LoggingConfig.parse_obj(dict(cfg or {}))

    context = FinderContext(service_type)
    handlers = []

    if cfg.stderr:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(FinderLineFormatter())
        handlers.append(stderr_handler)

    if cfg.file and cfg.file.strip():
        path = os.path.abspath(os.path.expanduser(cfg.file.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(FinderLineFormatter())
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(LEVELS.get(cfg.level.strip().lower(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    try:
        syslog_handler = _syslog_handler(cfg)
    except OSError as exc:  # pragma: no cover - environment-specific
        syslog_handler = None
        root.warning("Failed to configure syslog: %s", exc)
    if syslog_handler is not None:
        handlers.append(syslog_handler)

    for handler in handlers:
        handler.addFilter(context)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return context
