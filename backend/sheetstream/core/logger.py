"""
Package logging.

Plain text by default; LOG_FORMAT=json switches the package handler to one
JSON object per line. Export progress lines pass structured fields through
extra={"extra_fields": {...}}, which the JSON formatter lifts to top-level keys.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, MutableMapping, Optional, Tuple

PACKAGE_LOGGER = "sheetstream"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """
    Formatter that renders each record as a JSON object.
    Structured export fields never overwrite the base keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for key, value in (getattr(record, "extra_fields", None) or {}).items():
            payload.setdefault(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ExportLogAdapter(logging.LoggerAdapter):
    """
    Tags every line of one export with its export id, both in the message
    (text mode) and in extra_fields (JSON mode).
    """

    def __init__(self, logger: logging.Logger, export_id: str):
        super().__init__(logger, {"export_id": export_id})

    @property
    def export_id(self) -> str:
        return self.extra["export_id"]

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        fields = {"export_id": self.export_id}
        fields.update(extra.get("extra_fields") or {})
        extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return f"[export {self.export_id}] {msg}", kwargs


def setup_logger(
    name: str = PACKAGE_LOGGER,
    level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configures and returns the package logger.
    LOG_LEVEL and LOG_FORMAT are read from the environment unless given.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level or os.getenv("LOG_LEVEL", "INFO"))

    # One handler only, even when called again
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        if (log_format or os.getenv("LOG_FORMAT", "text")).lower() == "json":
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        logger.addHandler(handler)

    return logger


# Global logger instance
logger = setup_logger()
