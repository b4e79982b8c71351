"""Structured JSON logging for the billing engine

Every record carries the request's correlation id (set by the request-id
middleware) so one payment can be followed from the wizard through the
checkout redirect to reconciliation.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger import jsonlogger

from agaspay.config import settings

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Extras copied onto the JSON record when a log call passes them
PAYMENT_CONTEXT_FIELDS = ("connection_id", "bill_id", "external_reference", "field")

NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}

_HANDLER_NAME = "agaspay"


class CorrelationIdFilter(logging.Filter):
    """Stamp the current request's correlation id on records that lack one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = correlation_id_var.get()
        return True


class BillingJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = settings.ENVIRONMENT
        if getattr(record, "correlation_id", None):
            log_record["correlation_id"] = record.correlation_id
        for key in PAYMENT_CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_record[key] = value


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Install the stdout handler on the root logger.

    Calling it again replaces the handler instead of stacking a second one.
    """
    log_format = log_format or settings.LOG_FORMAT
    if log_format == "json":
        formatter: logging.Formatter = BillingJsonFormatter(
            fmt="%(asctime)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s [%(correlation_id)s] %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    for existing in [h for h in root_logger.handlers if h.get_name() == _HANDLER_NAME]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel((level or settings.LOG_LEVEL).upper())

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
