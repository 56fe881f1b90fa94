"""Operator API key gate for the agent endpoint.

Runs ahead of the dispatcher, so a rejected key never reaches identity,
spend-cap or payment checks and never issues a challenge.
"""

from __future__ import annotations

import secrets

import structlog
from fastapi import Request, Security
from fastapi.security import APIKeyHeader

from tollgate.errors import AuthenticationFailed, AuthenticationRequired

logger = structlog.get_logger()

API_KEY_HEADER = "X-API-Key"

_api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str | None:
    """Check X-API-Key against `TOLLGATE_API_KEY`; open when no key is configured."""
    config_key = request.app.state.config.api_key
    if not config_key:
        return None

    client = request.client.host if request.client else None
    if not api_key:
        logger.warning("auth.missing_key", path=request.url.path, client=client)
        raise AuthenticationRequired(f"Missing API key. Provide {API_KEY_HEADER} header.")

    if not secrets.compare_digest(api_key.encode(), config_key.encode()):
        logger.warning("auth.invalid_key", path=request.url.path, client=client)
        raise AuthenticationFailed("Invalid API key.")

    return api_key
