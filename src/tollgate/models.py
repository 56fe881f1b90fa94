"""Request, decision, and result models shared across the gateway."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal

NetworkName = Literal["testnet", "mainnet"]


def normalize_network(value: str | None) -> NetworkName:
    """Anything other than an explicit mainnet request runs on testnet."""
    return "mainnet" if (value or "").strip().lower() == "mainnet" else "testnet"


@dataclass
class ActionRequest:
    """One normalized request for a workflow action."""

    action: str
    caller_id: str | None
    network: NetworkName = "testnet"
    prompt: str | None = None
    code: str | None = None
    to_address: str | None = None
    amount: str | None = None

    def fingerprint(self) -> str:
        """Stable digest of the business payload, used to bind payment challenges."""
        payload = {
            "action": self.action,
            "caller": (self.caller_id or "").strip().lower(),
            "network": self.network,
            "prompt": self.prompt,
            "code": self.code,
            "toAddress": self.to_address,
            "amount": self.amount,
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class PolicyDecision:
    """Outcome of the policy gate for one request."""

    allowed: bool
    reason: str | None = None
    estimated_cost: Decimal | None = None


@dataclass
class GeneratedArtifact:
    """Source text produced by the text-generation service."""

    source_text: str
    origin_action: Literal["generate", "audit"]


@dataclass
class DeploymentResult:
    success: bool
    address: str
    raw_output: str


@dataclass
class TransferResult:
    success: bool
    tx_hash: str
    raw_output: str


@dataclass
class DispatchResult:
    """What the HTTP layer sends back: a status code and a JSON body."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
