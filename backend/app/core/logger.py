"""
Application logger

Every record carries the correlation id of the request that produced it
(``-`` outside a request), set by CorrelationMiddleware.
"""
import logging
import sys
from contextvars import ContextVar

from app.core.config import settings

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(level: str = "INFO") -> logging.Logger:
    root = logging.getLogger()
    if not any(getattr(h, "_cofo_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler._cofo_handler = True
        handler.addFilter(CorrelationIdFilter())
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"
            )
        )
        root.addHandler(handler)
    root.setLevel(level.upper())
    return logging.getLogger("cofo")


logger = setup_logging(settings.LOG_LEVEL)
