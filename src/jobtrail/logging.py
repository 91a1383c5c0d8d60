"""Logging setup shared by the CLI, the spool worker and the pipeline."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(threadName)s] %(message)s"
MAIN_LOG_NAME = "jobtrail.log"
DEBUG_LOG_NAME = "debug.log"
LOG_FILE_BYTES = 5_000_000
LOG_FILE_BACKUPS = 5
# Client libraries that log every request at INFO/DEBUG.
NOISY_LOGGERS = ("anthropic", "httpx", "httpcore", "sqlalchemy.engine", "watchdog")

_ANSI = {
    logging.DEBUG: "2",
    logging.INFO: "34",
    logging.WARNING: "33",
    logging.ERROR: "31",
    logging.CRITICAL: "1;31",
}


class ConsoleFormatter(logging.Formatter):
    """Short ``LEVEL logger: message`` lines, coloured on terminals.

    The ``jobtrail.`` prefix is dropped from logger names to keep lines short.
    """

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        name = record.name.removeprefix("jobtrail.")
        line = f"{record.levelname.lower():<7} {name}: {super().format(record)}"
        if not self.use_color:
            return line
        code = _ANSI.get(record.levelno, "0")
        return f"\x1b[{code}m{line}\x1b[0m"


def configure_logging(logging_config: LoggingConfig, root_dir: Path | None) -> None:
    """Install console and rotating file handlers.

    File handlers are skipped when ``root_dir`` is None, which keeps one-off
    commands usable on read-only machines.
    """

    level = parse_level(logging_config.level)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ConsoleFormatter(use_color=sys.stderr.isatty()))
    handlers: list[logging.Handler] = [console]

    if root_dir is not None:
        log_dir = (root_dir / "logs").expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating(log_dir / MAIN_LOG_NAME, logging.INFO))
        if logging_config.debug_file:
            handlers.append(_rotating(log_dir / DEBUG_LOG_NAME, logging.DEBUG))

    logging.basicConfig(level=level, handlers=handlers, force=True)
    quiet = max(level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def parse_level(value: str) -> int:
    """Map a level name (``debug``, ``WARN``...) to its numeric value."""

    name = value.strip().upper()
    level = logging.getLevelName("WARNING" if name == "WARN" else name)
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {value}")
    return level


def _rotating(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(
        path, maxBytes=LOG_FILE_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


__all__ = ["ConsoleFormatter", "configure_logging", "parse_level"]
