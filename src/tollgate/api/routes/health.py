"""Health check endpoint."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from tollgate import __version__

router = APIRouter()

_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> dict:
    """Health check — returns status, uptime, and gate configuration."""
    config = request.app.state.config
    challenges = request.app.state.challenges
    dispatcher = request.app.state.dispatcher

    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(time.time() - _start_time, 1),
        "actions": dispatcher.actions,
        "networks": {
            name: profile.hardhat_network for name, profile in config.networks.items()
        },
        "payments": {
            "gated_actions": config.payments.gated_actions,
            "currency": config.payments.currency,
            "outstanding_challenges": len(challenges),
        },
        "spend_cap": {
            "ceiling": str(config.policy.spend_cap),
            "unit": config.policy.native_unit,
            "gas_units": config.policy.gas_units,
        },
    }
