"""Console and rotating-file logging for the gateway."""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# handlers installed by configure_logging, replaced on the next call
_installed: list[logging.Handler] = []


def configure_logging(level: str = "INFO", log_file: Optional[str] = None,
                      max_bytes: int = 5 * 1024 * 1024, backup_count: int = 3) -> None:
    root = logging.getLogger()
    root_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(root_level)

    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    _installed.append(logging.StreamHandler())
    if log_file:
        _installed.append(RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count,
                                              encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in _installed:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # request lines from httpx would duplicate our own upstream messages
    logging.getLogger("httpx").setLevel(max(root_level, logging.WARNING))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)
