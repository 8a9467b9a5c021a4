"""Structured logging with credential redaction and session context."""

import logging
import re
import sys
from typing import Any, Dict, Optional

import structlog

# Field names containing any of these are replaced outright
SENSITIVE_KEYS = {
    "access_token",
    "refresh_token",
    "authorization",
    "secret",
    "password",
    "credential",
}

REDACTED = "REDACTED"

_JWT_PATTERN = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]*")
_TOKEN_PARAM_PATTERN = re.compile(r"([?&]token=)[^&\s]+")
_BEARER_PATTERN = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)


def scrub_credentials(text: str) -> str:
    """Mask JWTs, ``token=`` query parameters and bearer values inside free text."""
    text = _TOKEN_PARAM_PATTERN.sub(rf"\1{REDACTED}", text)
    text = _BEARER_PATTERN.sub(rf"\1{REDACTED}", text)
    return _JWT_PATTERN.sub(REDACTED, text)


def redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor removing credentials from a log entry.

    Sensitive field names are replaced wholesale; other string values are
    scrubbed, since websocket URLs and error messages can embed tokens.
    """
    for key, value in list(event_dict.items()):
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            event_dict[key] = REDACTED
        elif isinstance(value, str) and key != "event":
            event_dict[key] = scrub_credentials(value)

    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: JSON lines when True, coloured console output otherwise
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_session_context(user_id: str, role: Optional[str] = None) -> None:
    """Attach the signed-in user to every later log entry in this context."""
    structlog.contextvars.bind_contextvars(user_id=user_id, role=role)


def clear_session_context() -> None:
    structlog.contextvars.unbind_contextvars("user_id", "role")


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally bound to ``logger_name``."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger
