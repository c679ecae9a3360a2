"""Structlog logging configuration."""

from __future__ import annotations

import logging
import sys
from typing import Any, Iterable, Mapping

import structlog

from .config import MetaAdsSettings, get_settings

REDACTED = "***"


class RedactSensitiveKeys:
    """Processor masking configured keys anywhere in the event dict."""

    def __init__(self, keys: Iterable[str]):
        self._keys = {key.lower() for key in keys}

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {
                key: REDACTED if str(key).lower() in self._keys else self._scrub(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self._scrub(item) for item in value]
        return value

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        return self._scrub(event_dict)


def configure_logging(settings: MetaAdsSettings | None = None) -> None:
    """Configure structlog with JSON output on stderr."""

    settings = settings or get_settings()
    timestamper = structlog.processors.TimeStamper(fmt="iso")
    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        timestamper,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        RedactSensitiveKeys(settings.pii_redaction_keys),
    ]

    structlog.configure(
        processors=shared_processors
        + [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdout belongs to the stdio transport
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(message)s",
        force=True,
    )

    if settings.enable_request_logging:
        structlog.get_logger(__name__).info("request_logging_enabled")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structured logger."""

    return structlog.get_logger(name)


__all__ = ["RedactSensitiveKeys", "configure_logging", "get_logger"]
