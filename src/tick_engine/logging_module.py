"""
Logging & Audit Module

Two channels:
- Python logging for operators (console, optional file)
- Structured SystemLog records returned inside every EngineState,
  which the persistence layer stores as the audit trail

Every audit record is mirrored to Python logging.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any

from .models import SystemLog, LogLevel


LOGGER_NAME = "TickEngine"

_LEVEL_MAP = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def setup_logging(log_file: Optional[Path] = None, verbose: bool = True) -> logging.Logger:
    """
    Configure engine logging.

    Returns configured logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Repeated setup must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_format = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    # File handler
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Child logger under the engine namespace."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class EngineLogBook:
    """
    Collects audit records for one cycle.

    Records carry the cycle's injected clock, never wall time.
    """

    def __init__(self, now: datetime, logger: Optional[logging.Logger] = None):
        self.now = now
        self.logger = logger or get_logger("audit")
        self._records: List[SystemLog] = []

    @property
    def records(self) -> List[SystemLog]:
        return list(self._records)

    def log(
        self,
        level: LogLevel,
        source: str,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> SystemLog:
        record = SystemLog(
            level=level,
            source=source,
            message=message,
            created_at=self.now,
            meta=dict(meta or {}),
        )
        self._records.append(record)
        self.logger.log(_LEVEL_MAP[level], f"[{source}] {message}")
        return record

    def info(self, source: str, message: str, meta: Optional[Dict[str, Any]] = None) -> SystemLog:
        return self.log(LogLevel.INFO, source, message, meta)

    def warning(self, source: str, message: str, meta: Optional[Dict[str, Any]] = None) -> SystemLog:
        return self.log(LogLevel.WARNING, source, message, meta)

    def error(self, source: str, message: str, meta: Optional[Dict[str, Any]] = None) -> SystemLog:
        return self.log(LogLevel.ERROR, source, message, meta)

    def extend(self, records: List[SystemLog]) -> None:
        """Adopt records produced elsewhere (already mirrored)."""
        self._records.extend(records)

    def __len__(self) -> int:
        return len(self._records)
