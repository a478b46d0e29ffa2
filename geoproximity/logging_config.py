import logging
import json
import sys
from datetime import datetime, timezone
import os

# LogRecord attributes that are never copied into the "extra" block
_RESERVED = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'message', 'getMessage',
}

# Context fields lifted to the top level of a JSON log entry
_CONTEXT_FIELDS = ('request_id', 'user_id', 'entity_id', 'coordinates', 'radius_m', 'response_time_ms')


class StructuredJSONFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging compatible with ELK-style stacks"""

    def __init__(self, service_name: str = "geo-proximity"):
        super().__init__()
        self.service_name = service_name
        self.hostname = os.environ.get('HOSTNAME', 'localhost')

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON"""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service_name,
            "hostname": self.hostname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED or key in _CONTEXT_FIELDS or key.startswith('_'):
                continue
            log_entry.setdefault("extra", {})[key] = value

        return json.dumps(log_entry, default=str, separators=(',', ':'))


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for development"""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)8s | %(name)20s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def setup_logging(
    level: str = "INFO",
    use_json: bool = None,
    service_name: str = "geo-proximity"
) -> None:
    """Setup logging configuration for the proximity service"""

    if use_json is None:
        use_json = (
            os.environ.get('APP_ENV') == 'production' or
            os.environ.get('LOG_FORMAT', '').lower() == 'json'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredJSONFormatter(service_name) if use_json else DevelopmentFormatter())
    root_logger.addHandler(console_handler)

    configure_service_loggers(level)

    logger = logging.getLogger(__name__)
    logger.info(
        "Logging configured",
        extra={
            "log_format": "json" if use_json else "development",
            "log_level": level,
            "service": service_name
        }
    )


def configure_service_loggers(level: str) -> None:
    """Configure specific loggers for proximity service components"""

    loggers = [
        'geoproximity.services.spatial_index_service',
        'geoproximity.services.proximity_query_engine',
        'geoproximity.services.registrar',
        'geoproximity.services.point_store',
        'geoproximity.backing_store',
        'geoproximity.dependencies',
        'geoproximity.api.v1.endpoints',
        'geoproximity.config',
    ]

    for logger_name in loggers:
        logging.getLogger(logger_name).setLevel(getattr(logging, level.upper()))

    # Suppress noisy third-party loggers
    logging.getLogger('redis').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
