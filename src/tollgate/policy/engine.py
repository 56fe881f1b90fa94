"""Policy engine — identity admission and spend-cap estimation."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

import structlog

from tollgate.config import PolicyConfig
from tollgate.errors import PolicyViolation
from tollgate.models import ActionRequest, PolicyDecision

logger = structlog.get_logger()

WEI_PER_UNIT = Decimal(10) ** 18

DENYLISTED = "denylisted"
NO_IDENTITY = "no authenticated wallet"
SPEND_CAP_EXCEEDED = "spend-cap-exceeded"


class PriceProbe(Protocol):
    async def gas_price_wei(self, network: str) -> int: ...


class PolicyEngine:
    """Decides whether a request may proceed before anything costly runs."""

    def __init__(self, config: PolicyConfig, probe: PriceProbe) -> None:
        self.config = config
        self.probe = probe
        self._deny = frozenset(item.strip().lower() for item in config.deny_list)

    def admit(self, caller_id: str | None) -> str:
        """Return the normalized caller id, or raise if the caller is refused."""
        normalized = (caller_id or "").strip().lower()
        if not normalized:
            logger.warning("policy.denied", reason=NO_IDENTITY)
            raise PolicyViolation(NO_IDENTITY)
        if normalized in self._deny:
            logger.warning("policy.denied", reason=DENYLISTED, caller=normalized)
            raise PolicyViolation(DENYLISTED)
        return normalized

    def estimate_cost(self, gas_price_wei: int) -> Decimal:
        """Worst-case deployment cost in the network's native unit."""
        return Decimal(gas_price_wei) * self.config.gas_units / WEI_PER_UNIT

    def is_spend_capped(self, action: str) -> bool:
        return action in self.config.spend_capped_actions

    def decide(self, caller_id: str | None, action: str, gas_price_wei: int | None) -> PolicyDecision:
        """Pure decision over (identity, action, live price)."""
        normalized = (caller_id or "").strip().lower()
        if not normalized:
            return PolicyDecision(allowed=False, reason=NO_IDENTITY)
        if normalized in self._deny:
            return PolicyDecision(allowed=False, reason=DENYLISTED)
        if not self.is_spend_capped(action) or gas_price_wei is None:
            return PolicyDecision(allowed=True)

        estimate = self.estimate_cost(gas_price_wei)
        if estimate > self.config.spend_cap:
            return PolicyDecision(allowed=False, reason=SPEND_CAP_EXCEEDED, estimated_cost=estimate)
        return PolicyDecision(allowed=True, estimated_cost=estimate)

    async def enforce(self, request: ActionRequest) -> PolicyDecision:
        """Decide for an admitted request, fetching a fresh price when capped.

        Callers run `admit` first. The price is never cached: the cap bounds
        exposure at execution time.
        """
        price = None
        if self.is_spend_capped(request.action):
            price = await self.probe.gas_price_wei(request.network)

        decision = self.decide(request.caller_id, request.action, price)
        if not decision.allowed:
            logger.warning(
                "policy.denied",
                reason=decision.reason,
                action=request.action,
                network=request.network,
                estimated_cost=str(decision.estimated_cost) if decision.estimated_cost is not None else None,
            )
            raise PolicyViolation(
                decision.reason or "denied",
                estimated_cost=decision.estimated_cost,
                unit=self.config.native_unit,
            )

        logger.info(
            "policy.allowed",
            action=request.action,
            network=request.network,
            estimated_cost=str(decision.estimated_cost) if decision.estimated_cost is not None else None,
        )
        return decision
