"""JSON-RPC price probe — reads the current gas price of a network."""

from __future__ import annotations

import httpx
import structlog

from tollgate.config import NetworkProfile
from tollgate.errors import UpstreamError, UpstreamTimeout

logger = structlog.get_logger()


class RpcPriceProbe:
    """Query `eth_gasPrice` from each configured network's RPC endpoint."""

    def __init__(
        self,
        networks: dict[str, NetworkProfile],
        *,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.networks = networks
        self.timeout_s = timeout_s
        self._transport = transport

    async def gas_price_wei(self, network: str) -> int:
        """Return the network's current gas price in wei."""
        profile = self.networks.get(network)
        if profile is None:
            raise UpstreamError(f"No RPC endpoint configured for network '{network}'")

        payload = {"jsonrpc": "2.0", "method": "eth_gasPrice", "params": [], "id": 1}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s),
                transport=self._transport,
            ) as client:
                response = await client.post(profile.rpc_url, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("rpc.timeout", network=network, error=str(exc))
            raise UpstreamTimeout(f"Gas price lookup timed out for {network}") from exc
        except httpx.HTTPError as exc:
            logger.warning("rpc.error", network=network, error=str(exc))
            raise UpstreamError(f"Gas price lookup failed for {network}: {exc}") from exc

        if response.status_code >= 400:
            logger.warning("rpc.bad_status", network=network, status_code=response.status_code)
            raise UpstreamError(f"Gas price lookup failed for {network}: HTTP {response.status_code}")

        try:
            result = response.json()["result"]
            price = int(result, 16)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("rpc.bad_result", network=network, body=response.text[:300])
            raise UpstreamError(f"Unexpected gas price response from {network}") from exc

        logger.info("rpc.gas_price", network=network, gas_price_wei=price)
        return price
