"""
Logging configuration for the document vector service.
Uses structlog for structured JSON logging.
"""

import structlog
import logging
import sys

from .config import LOG_LEVEL, LOG_JSON

# Chatty per-request loggers of the provider SDKs and HTTP clients
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "openai", "sentence_transformers")


def setup_logging(log_level: str = "INFO", json_logs: bool = False):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: If True, output JSON. If False, use pretty console output.

    Request-scoped fields (document_id, organization_id) are bound with
    structlog.contextvars and merged into every event.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    if numeric_level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    return structlog.get_logger("docvector")


# LOG_JSON=true in deployed environments
logger = setup_logging(log_level=LOG_LEVEL, json_logs=LOG_JSON)
