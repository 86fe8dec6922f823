"""Logging setup shared by the API and the profile store."""
from __future__ import annotations

import logging
import os
import sys

LOG_LEVEL = os.getenv("SITEPASS_LOG_LEVEL", "INFO").strip().upper()
LOG_FILE = os.getenv("SITEPASS_LOG_FILE", "").strip()


class SitepassFormatter(logging.Formatter):
    """[ 2026-10-18 09:30:00 ] : INFO : sitepass.store : message"""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        message = f"[ {timestamp} ] : {record.levelname} : {record.name} : {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logger(
    name: str = "sitepass", log_file: str | None = None, level: str | int | None = None
) -> logging.Logger:
    """Configure the ``sitepass`` logger; children propagate to it."""

    logger = logging.getLogger(name)
    if name != "sitepass":
        setup_logger("sitepass", log_file=log_file, level=level)
        return logger

    logger.setLevel(level or LOG_LEVEL)
    if logger.handlers:
        return logger

    formatter = SitepassFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = log_file or LOG_FILE
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
