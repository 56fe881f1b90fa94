"""Deployment orchestrator — runs the external deploy toolchain."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

import structlog

from tollgate.config import DeployConfig, NetworkProfile
from tollgate.deploy.parser import ADDRESS_NOT_FOUND, HASH_NOT_FOUND, extract_address, extract_tx_hash
from tollgate.errors import DeploymentFailed
from tollgate.models import DeploymentResult, TransferResult

logger = structlog.get_logger()

_MAX_LOG_CHARS = 20_000

FUND_SCRIPT_TEMPLATE = """\
const hre = require("hardhat");
async function main() {{
  const [signer] = await hre.ethers.getSigners();
  console.log("Sender:", signer.address);

  const tx = await signer.sendTransaction({{
    to: "{to_address}",
    value: hre.ethers.parseEther("{amount}")
  }});

  console.log("Waiting for blocks...");
  await tx.wait();
  console.log("TxHash:", tx.hash);
}}
main().catch((error) => {{
  console.error(error);
  process.exitCode = 1;
}});
"""


def _clip(output: str) -> str:
    """Keep the tail of long toolchain output for responses and errors."""
    if len(output) > _MAX_LOG_CHARS:
        return output[-_MAX_LOG_CHARS:]
    return output


def render_fund_script(to_address: str, amount: str) -> str:
    return FUND_SCRIPT_TEMPLATE.format(to_address=to_address, amount=amount)


class DeploymentOrchestrator:
    """Stage source, run the toolchain against a network, read back the result.

    The toolchain is untrusted: its exit code and printed text are the only
    contract. Source is staged in a single slot that each deploy overwrites.
    """

    def __init__(self, config: DeployConfig, networks: dict[str, NetworkProfile]) -> None:
        self.config = config
        self.networks = networks
        self._project = Path(config.project_dir)
        self._slot_lock = asyncio.Lock()

    @property
    def source_path(self) -> Path:
        return self._project / self.config.contracts_dir / self.config.source_filename

    async def deploy(self, source_text: str, network: str) -> DeploymentResult:
        """Write the contract source and deploy it."""
        profile = self._profile(network)
        async with self._slot_lock:
            try:
                self.source_path.parent.mkdir(parents=True, exist_ok=True)
                self.source_path.write_text(source_text, encoding="utf-8")
            except OSError as exc:
                logger.error("deploy.stage_failed", path=str(self.source_path), error=str(exc))
                raise DeploymentFailed(f"Could not stage contract source: {exc}") from exc

            logger.info("deploy.start", network=network, profile=profile.hardhat_network)
            output = await self._run(self.config.deploy_script, profile)

        address = extract_address(output)
        if address is None:
            logger.warning("deploy.address_not_found", network=network)
        else:
            logger.info("deploy.done", network=network, address=address)
        return DeploymentResult(success=True, address=address or ADDRESS_NOT_FOUND, raw_output=_clip(output))

    async def fund(self, to_address: str, amount: str, network: str) -> TransferResult:
        """Send `amount` native units to `to_address` via a throwaway script."""
        profile = self._profile(network)
        scripts_dir = self._project / self.config.scripts_dir
        try:
            scripts_dir.mkdir(parents=True, exist_ok=True)
            fd, script_name = tempfile.mkstemp(prefix="fund-", suffix=".cjs", dir=scripts_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(render_fund_script(to_address, amount))
        except OSError as exc:
            logger.error("transfer.stage_failed", error=str(exc))
            raise DeploymentFailed(f"Could not write transfer script: {exc}") from exc

        script_path = Path(script_name)
        logger.info("transfer.start", network=network, to_address=to_address, amount=amount)
        try:
            output = await self._run(str(Path(self.config.scripts_dir) / script_path.name), profile)
        finally:
            script_path.unlink(missing_ok=True)

        tx_hash = extract_tx_hash(output)
        if tx_hash is None:
            logger.warning("transfer.hash_not_found", network=network)
        else:
            logger.info("transfer.done", network=network, tx_hash=tx_hash)
        return TransferResult(success=True, tx_hash=tx_hash or HASH_NOT_FOUND, raw_output=_clip(output))

    def _profile(self, network: str) -> NetworkProfile:
        profile = self.networks.get(network)
        if profile is None:
            raise DeploymentFailed(f"No deploy profile configured for network '{network}'")
        return profile

    async def _run(self, script: str, profile: NetworkProfile) -> str:
        argv = [*self.config.command, script, "--network", profile.hardhat_network]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(self._project),
            )
        except OSError as exc:
            logger.error("deploy.spawn_failed", argv=argv, error=str(exc))
            raise DeploymentFailed(f"Could not start deploy toolchain: {exc}") from exc

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.config.timeout_s)
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            logger.error("deploy.timeout", argv=argv, timeout_s=self.config.timeout_s)
            raise DeploymentFailed(f"timeout: deploy toolchain exceeded {self.config.timeout_s}s") from exc

        output = stdout.decode("utf-8", errors="replace")

        if process.returncode != 0:
            logger.error("deploy.failed", argv=argv, exit_code=process.returncode, output_length=len(output))
            raise DeploymentFailed(
                f"Deploy toolchain exited with code {process.returncode}",
                raw_output=_clip(output),
            )

        logger.info("deploy.toolchain_ok", exit_code=process.returncode, output_length=len(output))
        return output
