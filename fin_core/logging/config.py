# =============================================================================
# fin_core/logging/config.py
# Logging Configuration for the finance data layer
# =============================================================================

import logging
import os
import sys
import time
from datetime import date
from pathlib import Path
from typing import Any, Optional, Union


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_LOG_DIR = Path("logs")

# HTTP stack loggers that chatter at INFO on every request
NOISY_LOGGERS = ("urllib3", "requests", "charset_normalizer")


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.getenv("FIN_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logging(
    level: Union[int, str, None] = None,
    log_to_file: Optional[bool] = None,
    log_filename: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None,
) -> None:
    """
    Configure the root logger for an application embedding the data layer.

    Anything left as None is read from the environment: FIN_LOG_LEVEL,
    FIN_LOG_TO_FILE ("1"/"true") and FIN_LOG_DIR.

    Args:
        level: Level as an int or a name such as "DEBUG"
        log_to_file: Also write to ``<log_dir>/<log_filename>``
        log_filename: Defaults to fin_core_YYYY-MM-DD.log
        log_dir: Defaults to ./logs
    """
    if log_to_file is None:
        log_to_file = os.getenv("FIN_LOG_TO_FILE", "").strip().lower() in ("1", "true", "yes")

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        directory = Path(log_dir or os.getenv("FIN_LOG_DIR") or DEFAULT_LOG_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        filename = log_filename or f"fin_core_{date.today().isoformat()}.log"
        handlers.append(logging.FileHandler(directory / filename, encoding="utf-8"))

    logging.basicConfig(
        level=_resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("fin_core").info("Logging initialized")


def get_logger(name: str) -> logging.Logger:
    """Named logger; pass ``__name__`` so records nest under ``fin_core``."""
    return logging.getLogger(name)


class LogContext:
    """
    Times a block and logs its start, completion or failure.

    Keyword arguments are appended to every message.

    Usage:
        with LogContext(logger, "Replaying pending operations", pending=3):
            sync_manager.process_queue(wait=True)
        # Replaying pending operations [pending=3]... started
        # Replaying pending operations [pending=3]... completed (0.12s)
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO, **fields: Any):
        self.logger = logger
        self.level = level
        if fields:
            rendered = ", ".join(f"{key}={value}" for key, value in fields.items())
            operation = f"{operation} [{rendered}]"
        self.operation = operation
        self.elapsed: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "LogContext":
        self._started = time.perf_counter()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.elapsed = time.perf_counter() - self._started

        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed ({self.elapsed:.2f}s)")
        else:
            self.logger.warning(f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val}")

        return False
