"""key=value log lines for the engine, with questionnaire/answer context."""

import logging
import sys
from typing import Any

# Record attributes lifted into the line, in this order, when set via ``extra``
CONTEXT_FIELDS = ("run_id", "questionnaire_id", "answer_id", "batch_index", "topic")

LEVEL_BY_ENV = {"dev": logging.DEBUG, "test": logging.WARNING}


class StructuredFormatter(logging.Formatter):
    """Render a record as ``key=value`` pairs on one line."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
        }
        fields.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )
        fields["message"] = record.getMessage()
        fields.update(getattr(record, "extra_data", None) or {})

        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return " ".join(f"{key}={value}" for key, value in fields.items())


def _level_for_environment() -> int:
    try:
        from app.core.config import get_settings

        settings = get_settings()
    except Exception:
        # Settings need provider keys; scripts may log before they are set
        return logging.INFO
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return LEVEL_BY_ENV.get(settings.RFI_ENGINE_ENV, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger that writes structured lines to stdout.

    The level comes from LOG_LEVEL when set, otherwise from RFI_ENGINE_ENV
    (DEBUG in dev, WARNING in test, INFO elsewhere).
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_environment())

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log ``msg`` with context fields.

    Known context fields (questionnaire_id, topic, ...) become record
    attributes; anything else is appended as extra key=value pairs.
    """
    extra: dict[str, Any] = {name: kwargs.pop(name) for name in CONTEXT_FIELDS if name in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
