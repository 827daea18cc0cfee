"""
Engine Logging

Console output stays human readable. The rotating log file holds one JSON
object per line when structured logging is on, so trade events and risk
decisions can be filtered by their extra fields (trade_id, event_type,
opportunity_id, ...).

Usage:
    logger = get_logger(__name__)
    logger.info("Trade approved", extra={'opportunity_id': 'tri-1', 'amount': Decimal('12.5')})
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config.constants import (
    LOG_LEVEL,
    LOG_FILE_PATH,
    MAX_LOG_FILE_SIZE,
    LOG_BACKUP_COUNT,
    STRUCTURED_LOGGING,
)


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord carries; anything else came in through extra=
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord('', logging.INFO, '', 0, '', (), None))
) | {'message', 'asctime', 'taskName'}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extra fields at the top level"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS
        )
        if record.exc_info:
            entry['traceback'] = self.formatException(record.exc_info)

        # Decimals and enums are written as strings
        return json.dumps(entry, default=str)


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    structured: Optional[bool] = None
) -> None:
    """
    Install the console and rotating file handlers on the root logger.

    Arguments left as None fall back to the defaults in config.constants.
    Calling it again replaces the previously installed handlers.

    Raises:
        ValueError: If log_level is not a standard level name
    """
    level_name = (log_level or LOG_LEVEL).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    filepath = log_file or LOG_FILE_PATH
    use_json = STRUCTURED_LOGGING if structured is None else structured

    log_dir = os.path.dirname(filepath)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(TEXT_FORMAT, DATE_FORMAT))

    file_handler = logging.handlers.RotatingFileHandler(
        filepath,
        maxBytes=MAX_LOG_FILE_SIZE,
        backupCount=LOG_BACKUP_COUNT
    )
    file_handler.setFormatter(
        JSONFormatter() if use_json else logging.Formatter(TEXT_FORMAT, DATE_FORMAT)
    )

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    get_logger(__name__).info(
        f"Logging to {filepath} at {level_name}",
        extra={'structured_logging': use_json}
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_trade_event(logger: logging.Logger, event_type: str, **details) -> None:
    """Log a trade lifecycle event (TRADE_STARTED, TRADE_SUCCESS, TRADE_FAILED)"""
    logger.info(f"Trade event: {event_type}", extra={'event_type': event_type, **details})


def log_error_with_context(logger: logging.Logger, message: str, error: Exception, **context) -> None:
    """Log an error with its traceback and the caller's context fields"""
    context.update(error_type=type(error).__name__, error_message=str(error))
    logger.error(message, exc_info=error, extra=context)
