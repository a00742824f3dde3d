"""Default log sink and message formatting for caller-supplied sinks."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("a11y_audit")
logger.addHandler(logging.NullHandler())


def emit(log: Any, level: str, msg: str, *args: Any) -> None:
    """Format ``msg % args`` and hand the finished text to ``log.<level>``.

    Sinks only ever receive a single string argument, so plain callables such
    as ``print``-style functions work as well as stdlib loggers.
    """
    if log is None:
        return
    text = msg % args if args else msg
    getattr(log, level)(text)
