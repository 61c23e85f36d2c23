"""Line-oriented logging setup for the oracle daemon."""

import logging
import json
import sys
from typing import Any, Dict
from datetime import datetime, timezone

from ..config.settings import LoggingConfig


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        service = getattr(record, 'service', None)
        if service:
            log_data['service'] = service

        context = getattr(record, 'context', None)
        if context:
            log_data['context'] = context

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Single-line text: timestamp LEVEL [component] message {context}."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).isoformat(timespec='milliseconds')
        level = record.levelname.ljust(7)
        component = record.name.rsplit('.', 1)[-1]

        if self.use_colors and record.levelname in self.COLORS:
            level = f"{self.COLORS[record.levelname]}{level}{self.COLORS['RESET']}"

        formatted = f"{timestamp} {level} [{component}] {record.getMessage()}"

        context = getattr(record, 'context', None)
        if context:
            formatted += " " + json.dumps(context, default=str)

        if record.exc_info:
            # Keep the record on one line
            formatted += " | " + self.formatException(record.exc_info).replace("\n", " | ")

        return formatted


class ServiceContextFilter(logging.Filter):
    """Stamp every record with the service name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


def setup_logging(config: LoggingConfig, service_name: str = "governance-oracle") -> None:
    """
    Setup logging configuration for the service.

    Args:
        config: Logging configuration
        service_name: Name of the service for log context
    """
    if config.format.lower() == 'json':
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(ServiceContextFilter(service_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured: level={config.level}, format={config.format}, "
        f"service={service_name}"
    )


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """Log a message with structured context rendered by the formatters."""
    logger.log(level, message, extra={'context': context})


def error_context(error: BaseException) -> Dict[str, str]:
    """Context fields describing an exception."""
    return {'error_type': type(error).__name__, 'error': str(error)}
