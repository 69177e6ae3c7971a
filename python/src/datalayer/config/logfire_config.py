"""
Logging and tracing setup.

Module loggers are plain stdlib loggers. When LOGFIRE_ENABLED is set, log
records are also forwarded to logfire and safe_span() opens real logfire
spans; otherwise spans are no-ops so callers never need to branch.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import logfire

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_logfire_enabled = False
_configured = False


def _env_truthy(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def setup_logfire(
    *,
    enabled: bool | None = None,
    service_name: str = "datalayer",
    level: int | None = None,
) -> None:
    """
    Idempotent logging setup.

    Args:
        enabled: force logfire on/off; defaults to the LOGFIRE_ENABLED env var
        service_name: service name reported to logfire
        level: root level for the datalayer logger (defaults to LOG_LEVEL or INFO)
    """
    global _logfire_enabled, _configured
    if _configured:
        return

    if enabled is None:
        enabled = _env_truthy("LOGFIRE_ENABLED")
    if level is None:
        level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger("datalayer")
    root.setLevel(level)

    if enabled:
        logfire.configure(service_name=service_name, send_to_logfire="if-token-present")
        root.addHandler(logfire.LogfireLoggingHandler())
    elif not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)

    _logfire_enabled = enabled
    _configured = True


def is_logfire_enabled() -> bool:
    return _logfire_enabled


def get_logger(name: str) -> logging.Logger:
    """Return a stdlib logger; records propagate to the datalayer root logger."""
    return logging.getLogger(name)


@contextmanager
def safe_span(name: str, **attributes: Any) -> Iterator[None]:
    """Open a logfire span when logfire is enabled, otherwise do nothing."""
    if not _logfire_enabled:
        yield
        return
    with logfire.span(name, **attributes):
        yield
