"""Structured logging configuration.

Every event passes through `redact_sensitive`: payment signatures, raw
X-PAYMENT headers and API keys are dropped, and wallet ids are shortened.
`request_context` binds the action being dispatched so every event emitted
while one request runs carries it.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from tollgate.models import ActionRequest

REDACTED = "[redacted]"

_SECRET_KEYS = frozenset({"signature", "payment_header", "x_payment", "api_key"})
_WALLET_KEYS = frozenset({"caller", "caller_id", "signer", "to_address", "user_address"})


def mask_wallet(value: str) -> str:
    """Shorten a wallet id to its first 6 and last 4 characters."""
    if len(value) <= 12:
        return value
    return f"{value[:6]}...{value[-4:]}"


def redact_sensitive(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in _SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    for key in _WALLET_KEYS.intersection(event_dict):
        if isinstance(event_dict[key], str):
            event_dict[key] = mask_wallet(event_dict[key])
    return event_dict


def request_context(request: ActionRequest):
    """Bind action, network and caller for the duration of one dispatch."""
    return structlog.contextvars.bound_contextvars(
        action=request.action,
        network=request.network,
        caller=request.caller_id or "",
    )


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structlog for Tollgate."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        redact_sensitive,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "console":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Quiet noisy loggers
    for name in ("uvicorn.access", "httpcore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)
