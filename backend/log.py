# log.py
import logging
from contextvars import ContextVar
from typing import Optional

from config import LOG_LEVEL

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(correlation_id)s | %(message)s"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationFilter(logging.Filter):
    """Stamps every record with the correlation id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    resolved_level = getattr(logging, (level or LOG_LEVEL), logging.INFO)
    formatter = logging.Formatter(fmt or DEFAULT_FORMAT)

    root = logging.getLogger()
    root.setLevel(resolved_level)

    # Clear existing handlers to avoid duplicate logs in reloads
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)
