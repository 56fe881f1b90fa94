"""Typed failures surfaced by the gateway.

Every failure a caller can observe is one of these. The dispatcher maps them
to a status code and a JSON body; nothing below the dispatcher lets a raw
transport or subprocess exception escape.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class GatewayError(Exception):
    """Base class for all gateway failures."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_body(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class PolicyViolation(GatewayError):
    """Caller identity or spend cap refused the action. Never retried."""

    status_code = 403

    def __init__(self, reason: str, *, estimated_cost: Decimal | None = None, unit: str = "") -> None:
        self.reason = reason
        self.estimated_cost = estimated_cost
        self.unit = unit
        message = f"Policy Violation: {reason}"
        if estimated_cost is not None:
            message = f"{message}. Estimated cost: {estimated_cost:.4f} {unit}".rstrip()
        super().__init__(message)

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["reason"] = self.reason
        if self.estimated_cost is not None:
            body["estimatedCost"] = str(self.estimated_cost)
        return body


class PaymentInvalid(GatewayError):
    """Payment proof rejected. Terminal for the attempt; the challenge is spent."""

    status_code = 403


class UpstreamError(GatewayError):
    """An upstream HTTP service failed. Safe for the caller to retry."""

    status_code = 500


class UpstreamTimeout(UpstreamError):
    """An upstream HTTP service did not answer within its timeout."""

    status_code = 504


class DeploymentFailed(GatewayError):
    """The deploy toolchain exited non-zero, could not start, or timed out."""

    status_code = 500

    def __init__(self, message: str, raw_output: str = "") -> None:
        self.raw_output = raw_output
        super().__init__(message)

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["logs"] = self.raw_output
        return body


class InvalidAction(GatewayError):
    """Unknown action kind."""

    status_code = 400

    def __init__(self, message: str = "Invalid action") -> None:
        super().__init__(message)


class InvalidInput(GatewayError):
    """Request fields are missing or malformed for the requested action."""

    status_code = 400


class AuthenticationRequired(GatewayError):
    """The gateway requires an API key and none was sent."""

    status_code = 401


class AuthenticationFailed(GatewayError):
    """The API key sent does not match the configured key."""

    status_code = 403
