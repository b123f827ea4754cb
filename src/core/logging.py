"""
Logging setup

JSON records carry the service name and environment so that lines from the
API, the backup scheduler and the audit trail can be told apart once they
are shipped to a collector.
"""
import logging
import sys

from pythonjsonlogger import jsonlogger

from .config import settings

JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"
TEXT_FIELDS = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return jsonlogger.JsonFormatter(
            JSON_FIELDS,
            rename_fields={"levelname": "level"},
            static_fields={"service": "flowstack-server", "environment": settings.ENVIRONMENT},
        )
    return logging.Formatter(TEXT_FIELDS)


def setup_logging():
    """Route all loggers to stdout in the configured format"""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(settings.LOG_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.LOG_LEVEL.upper())

    # Audit events are always kept, whatever the root level
    logging.getLogger("audit").setLevel(logging.INFO)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
