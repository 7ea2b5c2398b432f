from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

_DEFAULT_LOG_LEVEL = "INFO"
_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    "DEBUG": "\x1b[36m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}
_FORMAT = "%(asctime)s | %(levelname)-8s | %(step_label)-7s | %(name)s | %(message)s"


class _StepLabelFilter(logging.Filter):
    """Expose `extra={"step": n}` as a fixed-width label; records outside a run get '-'."""

    def filter(self, record: logging.LogRecord) -> bool:
        step = getattr(record, "step", None)
        record.step_label = f"step {step}" if step is not None else "-"
        return True


class _ColorFormatter(logging.Formatter):
    def __init__(self, fmt: str, datefmt: str, *, use_color: bool) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        if self._use_color:
            color = _LEVEL_COLORS.get(original, "")
            record.levelname = f"{color}{original}{_RESET}" if color else original
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _should_use_color(stream: TextIO) -> bool:
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv("STEPWISE_LOG_LEVEL", _DEFAULT_LOG_LEVEL)).upper()
    resolved = logging.getLevelName(candidate)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def configure_logging(
    *,
    level: str | int | None = None,
    force: bool = False,
    stream: TextIO | None = None,
) -> None:
    root = logging.getLogger()
    resolved_level = resolve_level(level)
    root.setLevel(resolved_level)

    if root.handlers and not force:
        for handler in root.handlers:
            handler.setLevel(resolved_level)
        return

    target = stream or sys.stderr
    handler = logging.StreamHandler(target)
    handler.setLevel(resolved_level)
    handler.addFilter(_StepLabelFilter())
    handler.setFormatter(
        _ColorFormatter(
            fmt=_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
            use_color=_should_use_color(target),
        )
    )
    root.handlers.clear()
    root.addHandler(handler)
