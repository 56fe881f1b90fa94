"""Agent endpoint — one POST drives every workflow action."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from tollgate.api.middleware.auth import verify_api_key
from tollgate.models import ActionRequest, normalize_network

router = APIRouter()


class AgentRequest(BaseModel):
    action: str = ""
    prompt: str | None = None
    code: str | None = None
    user_address: str | None = Field(default=None, alias="userAddress")
    network: str | None = None
    to_address: str | None = Field(default=None, alias="toAddress")
    amount: str | None = None

    model_config = {"populate_by_name": True}

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_text(cls, value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, float):
            # shortest round-trip digits, never exponent notation
            text = format(Decimal(repr(value)), "f")
            return text.rstrip("0").rstrip(".") if "." in text else text
        return str(value)

    def to_action_request(self) -> ActionRequest:
        return ActionRequest(
            action=self.action.strip().lower(),
            caller_id=self.user_address,
            network=normalize_network(self.network),
            prompt=self.prompt,
            code=self.code,
            to_address=self.to_address,
            amount=self.amount,
        )


@router.post("/api/agent")
async def agent(
    request: Request,
    body: AgentRequest,
    x_payment: str | None = Header(default=None, alias="X-PAYMENT"),
    _api_key: str | None = Depends(verify_api_key),
) -> JSONResponse:
    """Dispatch one workflow action. Payment proofs ride in the X-PAYMENT header."""
    dispatcher = request.app.state.dispatcher
    result = await dispatcher.dispatch(body.to_action_request(), payment_header=x_payment)
    return JSONResponse(status_code=result.status_code, content=result.body)
