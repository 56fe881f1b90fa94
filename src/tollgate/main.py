"""Tollgate — FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tollgate import __version__
from tollgate.chain.rpc import RpcPriceProbe
from tollgate.config import TollgateConfig, get_config
from tollgate.deploy.orchestrator import DeploymentOrchestrator
from tollgate.errors import GatewayError, InvalidInput
from tollgate.gateway import ActionDispatcher
from tollgate.logging import setup_logging
from tollgate.payments import ChallengeStore, PaymentGate
from tollgate.policy.engine import PolicyEngine
from tollgate.textgen.client import TextGenClient

logger = structlog.get_logger()


def build_dispatcher(config: TollgateConfig, challenges: ChallengeStore) -> ActionDispatcher:
    """Wire the gates and effects for one process."""
    probe = RpcPriceProbe(config.networks, timeout_s=config.policy.rpc_timeout_s)
    return ActionDispatcher(
        policy=PolicyEngine(config.policy, probe),
        payments=PaymentGate(config.payments, challenges),
        textgen=TextGenClient(config.textgen),
        orchestrator=DeploymentOrchestrator(config.deploy, config.networks),
    )


def _describe_validation_error(exc: RequestValidationError) -> InvalidInput:
    """Collapse FastAPI's body validation errors into the gateway's 400 shape."""
    problems = []
    for item in exc.errors():
        field = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        problems.append(f"{field}: {item.get('msg', 'invalid')}" if field else item.get("msg", "invalid"))
    return InvalidInput("Invalid request: " + "; ".join(problems) if problems else "Invalid request")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    logger.info(
        "tollgate.starting",
        version=__version__,
        networks=list(config.networks),
        gated_actions=config.payments.gated_actions,
        deny_list_size=len(config.policy.deny_list),
    )
    if not config.textgen.api_key:
        logger.warning("tollgate.textgen.no_api_key")

    challenges = ChallengeStore()
    dispatcher = build_dispatcher(config, challenges)

    # Store on app state
    app.state.config = config
    app.state.challenges = challenges
    app.state.dispatcher = dispatcher

    logger.info("tollgate.ready", actions=dispatcher.actions)

    yield

    logger.info("tollgate.stopped", outstanding_challenges=len(challenges))


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Tollgate — Policy-Gated Action Gateway",
        version=__version__,
        description="Authorization, spend caps, and pay-per-call gating for contract workflows.",
        lifespan=lifespan,
    )

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def _malformed_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = _describe_validation_error(exc)
        logger.info("dispatch.rejected", error_type="InvalidInput", status_code=400, detail=error.message)
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    # Register routes
    from tollgate.api.routes.agent import router as agent_router
    from tollgate.api.routes.health import router as health_router

    app.include_router(health_router, tags=["health"])
    app.include_router(agent_router, tags=["agent"])

    return app


app = create_app()


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "tollgate.main:app",
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
