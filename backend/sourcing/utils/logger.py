"""
Logging utilities.

WHAT: Application logging plus a negotiation event log
WHY: Up to four negotiations run concurrently and their turns interleave;
     each line has to say which negotiation it belongs to
HOW: stdlib logging. NegotiationLogAdapter stamps the negotiation id on a
     record; the negotiation log handler only accepts stamped records.
"""

import logging
import sys
from pathlib import Path

from ..core.config import settings

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s"
NEGOTIATION_FORMAT = "%(asctime)s %(levelname)-7s %(negotiation_id)s %(message)s"


class NegotiationLogAdapter(logging.LoggerAdapter):
    """Logger bound to one negotiation."""

    def process(self, msg, kwargs):
        negotiation_id = self.extra["negotiation_id"]
        kwargs.setdefault("extra", {})["negotiation_id"] = negotiation_id
        return f"[{negotiation_id}] {msg}", kwargs


class NegotiationRecordFilter(logging.Filter):
    """Passes only records emitted through a NegotiationLogAdapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        return hasattr(record, "negotiation_id")


def _file_handler(path: str, level: int, fmt: str) -> logging.FileHandler:
    log_file = Path(path)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    return handler


def setup_logging():
    """
    Configure the root logger.

    Console gets INFO and up, LOG_FILE gets everything, and
    LOG_NEGOTIATION_FILE gets the per-negotiation transitions and warnings
    with the negotiation id in its own column. Safe to call more than once.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_file_handler(settings.LOG_FILE, logging.DEBUG, FILE_FORMAT))

    negotiation_handler = _file_handler(settings.LOG_NEGOTIATION_FILE, logging.INFO, NEGOTIATION_FORMAT)
    negotiation_handler.addFilter(NegotiationRecordFilter())
    root_logger.addHandler(negotiation_handler)

    # SQL echo only in debug; the store logs its own writes
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DEBUG else logging.WARNING)

    root_logger.info(
        f"Logging initialized (level={settings.LOG_LEVEL}, file={settings.LOG_FILE}, "
        f"negotiations={settings.LOG_NEGOTIATION_FILE})"
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_negotiation_logger(name: str, negotiation_id: str) -> NegotiationLogAdapter:
    """Module logger whose lines carry `negotiation_id`."""
    return NegotiationLogAdapter(logging.getLogger(name), {"negotiation_id": negotiation_id})
