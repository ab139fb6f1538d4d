import json
import logging
import time
from contextvars import ContextVar
from typing import Optional

from config import LOG_LEVEL

# Document view currently being processed ("VIEW-<id>")
correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


class StructuredLogger:
    """One JSON object per line, tagged with the active view's correlation ID."""

    def __init__(self, name: str, level: str = LOG_LEVEL):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)

    def _emit(self, level: int, message: str, **context):
        if not self.logger.isEnabledFor(level):
            return
        entry = {
            "timestamp": time.time(),
            "level": logging.getLevelName(level),
            "message": message,
            "correlation_id": correlation_id_var.get(),
            **context,
        }
        self.logger.log(level, json.dumps(entry, default=str, ensure_ascii=False))

    def debug(self, message: str, **context):
        self._emit(logging.DEBUG, message, **context)

    def info(self, message: str, **context):
        self._emit(logging.INFO, message, **context)

    def warning(self, message: str, **context):
        self._emit(logging.WARNING, message, **context)

    def error(self, message: str, **context):
        self._emit(logging.ERROR, message, **context)


logger = StructuredLogger("currency_converter")


def set_correlation_id(view_id: str):
    """Tag subsequent log lines with the document view being processed."""
    correlation_id_var.set(f"VIEW-{view_id}")


def log_endpoint_call(endpoint: str, inputs: dict, outputs: dict, duration_ms: float):
    """Log endpoint execution."""
    logger.info(
        f"Endpoint executed: {endpoint}",
        endpoint=endpoint,
        inputs=inputs,
        outputs=outputs,
        duration_ms=round(duration_ms, 2),
    )
