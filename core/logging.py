"""
Logging setup for the booking service.

Staging and production emit one JSON object per record (python-json-logger);
development gets single lines with any booking context appended as
key=value pairs, so a rejected booking can be traced by castle, date or
reference in either format.
"""
import logging
import sys
from typing import Any, Dict, Optional, Tuple, Type

from pythonjsonlogger import jsonlogger

from core.config import settings


# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed to a log call through `extra`."""
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
    }


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records carrying level, origin and business identity."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = self.formatTime(record, self.datefmt)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno

        log_record['app_name'] = settings.app_name
        log_record['business'] = settings.business_name
        log_record['environment'] = settings.app_env

        if record.exc_info:
            log_record['exc_info'] = self.formatException(record.exc_info)


class ContextFormatter(logging.Formatter):
    """Plain-text lines with `extra` fields appended, e.g. `castle=Pirate Ship`."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if context:
            pairs = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
            line = f"{line} [{pairs}]"
        return line


def setup_logging(level: Optional[str] = None, json_format: Optional[bool] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (defaults to settings.log_level)
        json_format: Force JSON on or off (defaults to on outside development)
    """
    level = (level or settings.log_level).upper()
    use_json = json_format if json_format is not None else not settings.is_development

    if use_json:
        formatter: logging.Formatter = CustomJsonFormatter(
            fmt='%(timestamp)s %(level)s %(name)s %(message)s',
            datefmt='%Y-%m-%dT%H:%M:%S%z'
        )
    else:
        formatter = ContextFormatter(
            fmt='%(asctime)s %(levelname)-7s %(name)s: %(message)s',
            datefmt='%H:%M:%S'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.is_development and settings.debug else logging.WARNING
    )

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"log_level": level, "json_logging": use_json}
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Attach the same context fields to every record logged inside a block.

    Exceptions listed in `expected` (business outcomes such as a rejected
    booking) are logged at WARNING without a traceback; anything else is
    logged at ERROR with one. Nothing is suppressed.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        expected: Tuple[Type[BaseException], ...] = (),
        **context: Any
    ):
        self.logger = logger or get_logger(__name__)
        self.expected = expected
        self.context = context

    def __enter__(self) -> 'LogContext':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            return
        if self.expected and issubclass(exc_type, self.expected):
            self.logger.warning(f"{exc_type.__name__}: {exc_val}", extra=self.context)
        else:
            self.logger.error(
                f"Unexpected {exc_type.__name__}",
                extra=self.context,
                exc_info=(exc_type, exc_val, exc_tb)
            )

    def log(self, level: str, message: str, **extra_fields: Any) -> None:
        """Log at the named level with the block's context plus `extra_fields`."""
        log_method = getattr(self.logger, level.lower())
        log_method(message, extra={**self.context, **extra_fields})
