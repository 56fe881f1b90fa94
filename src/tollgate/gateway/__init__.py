"""Tollgate action dispatch."""

from tollgate.gateway.dispatcher import ActionDispatcher, ActionPipeline

__all__ = [
    "ActionDispatcher",
    "ActionPipeline",
]
