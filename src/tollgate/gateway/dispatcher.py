"""Action dispatcher — the single entrypoint for workflow requests.

Each action is an entry in a dispatch table: input validation plus an
effect. Every request runs the same gates in the same order before any
effect is allowed to touch the network, the filesystem, or a subprocess:

    identity -> action lookup -> input validation -> spend cap -> payment -> effect
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from tollgate.errors import GatewayError, InvalidAction, InvalidInput
from tollgate.logging import request_context
from tollgate.models import ActionRequest, DispatchResult, PolicyDecision

logger = structlog.get_logger()

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_AMOUNT_RE = re.compile(r"^\d+(\.\d{1,18})?$")

Effect = Callable[[ActionRequest, PolicyDecision], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ActionPipeline:
    """Validation and effect for one action kind."""

    validate: Callable[[ActionRequest], None]
    effect: Effect


def _require_prompt(request: ActionRequest) -> None:
    if not (request.prompt or "").strip():
        raise InvalidInput(f"'{request.action}' requires a prompt")


def _require_code(request: ActionRequest) -> None:
    if not (request.code or "").strip():
        raise InvalidInput(f"'{request.action}' requires contract code")


def _validate_transfer(request: ActionRequest) -> None:
    to_address = (request.to_address or "").strip()
    if not _ADDRESS_RE.match(to_address):
        raise InvalidInput("toAddress must be 0x followed by 40 hex characters")

    amount = (request.amount or "").strip()
    if not _AMOUNT_RE.match(amount):
        raise InvalidInput("amount must be a plain decimal number")
    try:
        value = Decimal(amount)
    except InvalidOperation as exc:
        raise InvalidInput("amount must be a plain decimal number") from exc
    if value <= 0:
        raise InvalidInput("amount must be greater than zero")


class ActionDispatcher:
    """Routes one ActionRequest through the gates to its effect."""

    def __init__(self, *, policy, payments, textgen, orchestrator) -> None:
        self.policy = policy
        self.payments = payments
        self.textgen = textgen
        self.orchestrator = orchestrator
        self._pipelines: dict[str, ActionPipeline] = {
            "research": ActionPipeline(validate=_require_prompt, effect=self._research),
            "generate": ActionPipeline(validate=_require_prompt, effect=self._generate),
            "audit": ActionPipeline(validate=_require_code, effect=self._audit),
            "deploy": ActionPipeline(validate=_require_code, effect=self._deploy),
            "transfer": ActionPipeline(validate=_validate_transfer, effect=self._transfer),
        }

    @property
    def actions(self) -> list[str]:
        return list(self._pipelines)

    async def dispatch(self, request: ActionRequest, payment_header: str | None = None) -> DispatchResult:
        """Handle one request end-to-end. Never raises."""
        with request_context(request):
            return await self._dispatch(request, payment_header)

    async def _dispatch(self, request: ActionRequest, payment_header: str | None) -> DispatchResult:
        try:
            self.policy.admit(request.caller_id)

            pipeline = self._pipelines.get(request.action)
            if pipeline is None:
                logger.warning("dispatch.invalid_action", action=request.action)
                raise InvalidAction()
            pipeline.validate(request)

            decision = await self.policy.enforce(request)

            challenge = self.payments.check(request, payment_header)
            if challenge is not None:
                return DispatchResult(
                    status_code=402,
                    body={
                        "success": False,
                        "error": "Payment required",
                        "paymentDetails": challenge.to_details(),
                    },
                )

            logger.info("dispatch.execute", action=request.action, network=request.network)
            body = await pipeline.effect(request, decision)
        except GatewayError as exc:
            logger.info(
                "dispatch.rejected",
                action=request.action,
                error_type=type(exc).__name__,
                status_code=exc.status_code,
            )
            return DispatchResult(status_code=exc.status_code, body=exc.to_body())
        except Exception as exc:
            logger.exception("dispatch.unexpected_error", action=request.action, error=str(exc))
            return DispatchResult(status_code=500, body={"success": False, "error": "Internal gateway error"})

        return DispatchResult(status_code=200, body={"success": True, **body})

    async def _research(self, request: ActionRequest, decision: PolicyDecision) -> dict[str, Any]:
        result = await self.textgen.research(request.prompt, request.caller_id)
        return {"result": result}

    async def _generate(self, request: ActionRequest, decision: PolicyDecision) -> dict[str, Any]:
        artifact = await self.textgen.generate_contract(request.prompt, request.caller_id)
        return {"code": artifact.source_text}

    async def _audit(self, request: ActionRequest, decision: PolicyDecision) -> dict[str, Any]:
        report = await self.textgen.audit_contract(request.code)
        return {"report": report}

    async def _deploy(self, request: ActionRequest, decision: PolicyDecision) -> dict[str, Any]:
        result = await self.orchestrator.deploy(request.code, request.network)
        body: dict[str, Any] = {"address": result.address, "logs": result.raw_output}
        if decision.estimated_cost is not None:
            body["estimatedCost"] = str(decision.estimated_cost)
        return body

    async def _transfer(self, request: ActionRequest, decision: PolicyDecision) -> dict[str, Any]:
        result = await self.orchestrator.fund(
            request.to_address.strip(),
            request.amount.strip(),
            request.network,
        )
        return {"txHash": result.tx_hash}
