"""Structured logging configuration using structlog."""

import logging
import re
import sys

import structlog

# Stripe API keys, webhook signing secrets and PaymentIntent client secrets
# e.g. sk_test_51H..., whsec_3f9..., pi_3N..._secret_Qx...
_SECRET_PATTERN = re.compile(
    r"((?:sk|rk)_(?:live|test)_[A-Za-z0-9]{8,}"
    r"|whsec_[A-Za-z0-9]{8,}"
    r"|pi_[A-Za-z0-9]+_secret_[A-Za-z0-9]+)"
)
_REDACTED = "<SECRET_REDACTED>"


def redact_secrets(value: str) -> str:
    """Replace payment secrets inside a string."""
    return _SECRET_PATTERN.sub(_REDACTED, value)


class SecretRedactingFilter(logging.Filter):
    """Filter that redacts payment secrets from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from log message."""
        if record.msg and isinstance(record.msg, str):
            record.msg = redact_secrets(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: redact_secrets(arg) if isinstance(arg, str) else arg
                    for key, arg in record.args.items()
                }
            else:
                record.args = tuple(
                    redact_secrets(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return True


def _redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor to redact payment secrets from event dictionaries."""
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = redact_secrets(value)
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    secret_filter = SecretRedactingFilter()
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers and add new one with filter
    root_logger.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(secret_filter)
    root_logger.addHandler(handler)

    # Library loggers that may echo request bodies or connection URLs
    for logger_name in ("stripe", "sqlalchemy.engine", "asyncpg", "redis"):
        logging.getLogger(logger_name).addFilter(secret_filter)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
