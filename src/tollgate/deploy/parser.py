"""Parsing of deploy toolchain output.

The toolchain scripts print fixed lines that this module reads back:

    Contract deployed to: 0x<40 hex chars>
    TxHash: 0x<64 hex chars>

Any change to those lines in the scripts must be mirrored here.
"""

from __future__ import annotations

import re

ADDRESS_NOT_FOUND = "address not found"
HASH_NOT_FOUND = "hash not found"

_ADDRESS_RE = re.compile(r"deployed to: (0x[a-fA-F0-9]{40})(?![a-fA-F0-9])")
_TX_HASH_RE = re.compile(r"TxHash: (0x[a-fA-F0-9]{64})(?![a-fA-F0-9])")


def extract_address(output: str) -> str | None:
    """First deployed contract address in `output`, if any."""
    match = _ADDRESS_RE.search(output or "")
    return match.group(1) if match else None


def extract_tx_hash(output: str) -> str | None:
    """First transaction hash in `output`, if any."""
    match = _TX_HASH_RE.search(output or "")
    return match.group(1) if match else None
