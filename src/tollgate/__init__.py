"""Tollgate — policy-gated action gateway."""

__version__ = "1.0.0"
