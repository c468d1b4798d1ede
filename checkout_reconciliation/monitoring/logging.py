"""
Structured logging configuration.

Every module logs through ``structlog.get_logger(__name__)`` with snake_case
event names and keyword fields. Request-scoped values bound by the API
middleware (request id, method, path) are merged from contextvars.

Checkout events carry shopper data, so addresses are dropped and hosted
checkout URLs lose their query string before rendering.
"""
import logging
import sys
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import structlog
from pythonjsonlogger import jsonlogger

from checkout_reconciliation.config import Settings, get_settings

EventDict = Dict[str, Any]

REDACTED = "[redacted]"
REDACTED_FIELDS = frozenset({"shipping_address", "stripe_secret_key", "card", "email"})
URL_FIELDS = frozenset({"checkout_url", "redirect_url"})


def app_context_processor(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """Processor stamping every event with the service name and environment."""

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_name", settings.app_name)
        event_dict.setdefault("app_env", settings.app_env)
        return event_dict

    return add_app_context


def redact_sensitive_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop shopper PII and strip query strings from hosted checkout URLs."""
    for key in REDACTED_FIELDS.intersection(event_dict):
        event_dict[key] = REDACTED
    for key in URL_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and value:
            parts = urlsplit(value)
            event_dict[key] = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return event_dict


def _renderer(settings: Settings) -> Any:
    # Readable output for local debugging, JSON everywhere else
    if settings.debug and sys.stdout.isatty():
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once; the root handler is replaced each time.

    Args:
        settings: Optional settings (defaults to cached settings)
    """
    settings = settings or get_settings()

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        app_context_processor(settings),
        redact_sensitive_fields,
        _renderer(settings),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, settings.log_level))

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
