from __future__ import annotations

import logging
import logging.config
import uuid
from collections.abc import MutableMapping
from contextvars import ContextVar
from threading import Lock
from typing import Any

import structlog
import structlog.contextvars
import structlog.stdlib
from structlog.typing import Processor

from partner_ledger.core.config import Settings
from partner_ledger.core.constants import (
    ACTOR_ID_CTX_KEY,
    MASKED_LOG_KEYS,
    REQUEST_ID_CTX_KEY,
    SERVICE_NAME,
)

_configured = False
_configure_lock = Lock()
_request_id: ContextVar[str | None] = ContextVar(REQUEST_ID_CTX_KEY, default=None)


def mask_credentials(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace provider secrets with a fixed marker before rendering."""
    for key in MASKED_LOG_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        mask_credentials,
    ]


def _logger_levels(settings: Settings, root_level: int) -> dict[str, int]:
    return {
        "": root_level,
        "sqlalchemy.engine": logging.INFO if settings.database.echo else logging.WARNING,
        "httpx": logging.WARNING,
        "uvicorn.access": root_level,
    }


def configure_logging(settings: Settings) -> None:
    """Route structlog and stdlib records through one JSON renderer, once per process."""
    global _configured
    with _configure_lock:
        if _configured:
            return

        root_level = logging.getLevelNamesMapping().get(settings.log_level, logging.INFO)
        shared = _shared_processors()

        structlog.configure(
            processors=[
                *shared,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "json": {
                        "()": structlog.stdlib.ProcessorFormatter,
                        "foreign_pre_chain": shared,
                        "processors": [
                            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                            structlog.processors.dict_tracebacks,
                            structlog.processors.JSONRenderer(),
                        ],
                    }
                },
                "handlers": {
                    "stream": {
                        "class": "logging.StreamHandler",
                        "formatter": "json",
                    }
                },
                "loggers": {
                    name: {
                        "handlers": ["stream"],
                        "level": level,
                        "propagate": name == "",
                    }
                    for name, level in _logger_levels(settings, root_level).items()
                },
            }
        )

        structlog.contextvars.bind_contextvars(service=SERVICE_NAME)
        _configured = True


def bind_request_context(request_id: str, **kwargs: Any) -> None:
    _request_id.set(request_id)
    structlog.contextvars.bind_contextvars(**{REQUEST_ID_CTX_KEY: request_id, **kwargs})


def bind_actor_context(actor_id: uuid.UUID, level: int) -> None:
    """Attach the acting partner to every event logged for the rest of the request."""
    structlog.contextvars.bind_contextvars(
        **{ACTOR_ID_CTX_KEY: str(actor_id), "actor_level": level}
    )


def clear_request_context() -> None:
    _request_id.set(None)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)


def get_request_id(default: str | None = None) -> str | None:
    return _request_id.get() or default
