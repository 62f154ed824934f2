"""Leveled text logger with emoji stripping."""

from __future__ import annotations

import copy as _copy
import datetime
import json
import logging
import re
import sys
from typing import Any, Iterable, TextIO

_TRACE = 5

_LEVEL_NAMES = {
    _TRACE: "trace",
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

# Matches an emoji code such as ":house: " preceding the real message.
_EMOJI = re.compile(r":\w+:\s", re.ASCII)
_PLAIN = re.compile(r"[A-Za-z0-9\-._/@^+]+")


def convert(args: Iterable[Any]) -> str:
    """Join log arguments into one phrase, dropping emoji codes."""
    parts = []
    for arg in args:
        cleaned = _EMOJI.sub("", f"{arg}")
        parts.append(cleaned.strip(" "))
    return " ".join(parts)


def _quote(value: str) -> str:
    if _PLAIN.fullmatch(value):
        return value
    return json.dumps(value, ensure_ascii=False)


class _Discard:
    """Write-only sink that drops everything written to it."""

    def write(self, data: str) -> int:
        return len(data)


class Logger:
    """Writes ``time=... level=... msg=...`` lines for enabled levels.

    Levels are the :mod:`logging` numbers; lower levels are more verbose.
    """

    def __init__(self, stream: TextIO | None = None, level: int = logging.INFO) -> None:
        self.stream = stream if stream is not None else sys.stderr
        self.level = level

    def set_level(self, level: int) -> None:
        self.level = level

    def set_output(self, stream: TextIO) -> None:
        self.stream = stream

    def _log(self, level: int, args: Iterable[Any]) -> None:
        if level < self.level:
            return
        stamp = datetime.datetime.now().astimezone().isoformat(timespec="seconds")
        name = _LEVEL_NAMES.get(level, str(level))
        self.stream.write(f'time="{stamp}" level={name} msg={_quote(convert(args))}\n')
        flush = getattr(self.stream, "flush", None)
        if flush is not None:
            flush()

    def trace(self, *args: Any) -> None:
        self._log(_TRACE, args)

    def debug(self, *args: Any) -> None:
        self._log(logging.DEBUG, args)

    def info(self, *args: Any) -> None:
        self._log(logging.INFO, args)

    def success(self, *args: Any) -> None:
        self.info(*args)

    def warn(self, *args: Any) -> None:
        self._log(logging.WARNING, args)

    def warning(self, *args: Any) -> None:
        self.warn(*args)

    def error(self, *args: Any) -> None:
        self._log(logging.ERROR, args)

    def fatal(self, *args: Any) -> None:
        """Log at fatal level and exit with status 1."""
        self._log(logging.CRITICAL, args)
        raise SystemExit(1)

    def copy(self) -> "Logger":
        return _copy.copy(self)

    def ask(self) -> bool:
        """Ask for confirmation on standard input; only 'y' or 'yes' confirm."""
        self.info("Do you want to continue with this operation? [y/N]: ")
        line = sys.stdin.readline()
        words = line.split()
        if len(words) != 1:
            return False
        return words[0].lower() in ("y", "yes")


def debug_level() -> int:
    return logging.DEBUG


def is_debug_level(logger: Logger) -> bool:
    return logger.level == debug_level()


def new_logger() -> Logger:
    return Logger()


def new_null_logger() -> Logger:
    """Return a logger that discards everything."""
    return Logger(stream=_Discard())


def new_buffer_logger(buffer: TextIO) -> Logger:
    """Return a logger writing into ``buffer``."""
    return Logger(stream=buffer)