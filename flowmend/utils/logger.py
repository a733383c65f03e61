# flowmend/utils/logger.py
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, MutableMapping, Tuple


ROOT_LOGGER = "flowmend"

_LEVEL_MAP = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARN,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

_COLORS = {
    logging.ERROR: "\033[91m",
    logging.WARNING: "\033[93m",
    logging.INFO: "\033[92m",
}


def parse_level(name: str | None, default: int = logging.INFO) -> int:
    """Level name (case-insensitive) -> logging level; unknown names give `default`."""
    if not name:
        return default
    return _LEVEL_MAP.get(name.strip().upper(), default)


class _ColorFormatter(logging.Formatter):
    """Colors by level, only when the handler's stream is a terminal."""

    def __init__(self, stream, fmt: str, datefmt: str):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._tty = hasattr(stream, "isatty") and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        if not self._tty:
            return msg
        for level in (logging.ERROR, logging.WARNING, logging.INFO):
            if record.levelno >= level:
                return f"{_COLORS[level]}{msg}\033[0m"
        return msg


def init_logger(
    name: str = ROOT_LOGGER,
    level: int | None = None,
    log_dir: str | Path | None = None,
    file_name: str = "flowmend.log",
    file_max_mb: int = 5,
    file_backup: int = 3,
) -> logging.Logger:
    """
    Initialize the project logger:
      - colored handler on stderr (stdout carries command output such as fixed JSON)
      - optional rotating file handler (FLOWMEND_LOG_DIR when log_dir is not given)
    Level: `level`, else LOG_LEVEL, else INFO.
    """
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(level if level is not None else parse_level(os.getenv("LOG_LEVEL")))

    fmt = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(_ColorFormatter(sys.stderr, fmt=fmt, datefmt=datefmt))
    logger.addHandler(sh)

    log_dir = log_dir or os.getenv("FLOWMEND_LOG_DIR")
    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            filename=str(log_dir / file_name),
            maxBytes=file_max_mb * 1024 * 1024,
            backupCount=file_backup,
            encoding="utf-8",
        )
        fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
        logger.addHandler(fh)

    return logger


log = init_logger()


def set_level(level: str | int) -> None:
    """Change the project logger level at runtime (CLI --log-level)."""
    logging.getLogger(ROOT_LOGGER).setLevel(level if isinstance(level, int) else parse_level(level))


def get_logger(child: str) -> logging.Logger:
    """Create/get a child logger under the project logger."""
    return logging.getLogger(ROOT_LOGGER).getChild(child)


class SessionAdapter(logging.LoggerAdapter):
    """Prefixes every record with a short repair-session key."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['session']}] {msg}", kwargs


def session_logger(logger: logging.Logger, key: str) -> SessionAdapter:
    return SessionAdapter(logger, {"session": key[:12]})
