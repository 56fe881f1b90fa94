from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from tollgate.config import DeployConfig, NetworkProfile, PaymentConfig, PolicyConfig
from tollgate.deploy.orchestrator import DeploymentOrchestrator
from tollgate.deploy.parser import ADDRESS_NOT_FOUND
from tollgate.errors import DeploymentFailed, UpstreamTimeout
from tollgate.gateway import ActionDispatcher
from tollgate.models import ActionRequest, DeploymentResult, GeneratedArtifact, TransferResult
from tollgate.payments import ChallengeStore, PaymentGate, PaymentProof, encode_payment_header
from tollgate.policy.engine import PolicyEngine

DENIED = "0xdead00000000000000000000000000000000beef"
PAYER = Account.from_key("0x" + "33" * 32)
CALLER = PAYER.address
RECIPIENT = "0x2222222222222222222222222222222222222222"
CHEAP_GAS = 3_333_333_334  # ~0.01 native units for 3M gas
EXPENSIVE_GAS = 20_000_000_000  # 0.06 native units for 3M gas


class StubProbe:
    def __init__(self, price_wei: int = CHEAP_GAS) -> None:
        self.price_wei = price_wei
        self.calls: list[str] = []

    async def gas_price_wei(self, network: str) -> int:
        self.calls.append(network)
        return self.price_wei


class StubTextGen:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def research(self, prompt: str, caller_id: str) -> str:
        self.calls.append(("research", prompt))
        return f"answer to {prompt}"

    async def generate_contract(self, prompt: str, caller_id: str) -> GeneratedArtifact:
        self.calls.append(("generate", prompt))
        return GeneratedArtifact(source_text="contract GenContract {}", origin_action="generate")

    async def audit_contract(self, code: str) -> str:
        self.calls.append(("audit", code))
        return "looks fine"


class StubOrchestrator:
    def __init__(self, address: str = "0x" + "1" * 40) -> None:
        self.address = address
        self.deploy_calls: list[tuple[str, str]] = []
        self.fund_calls: list[tuple[str, str, str]] = []

    async def deploy(self, source_text: str, network: str) -> DeploymentResult:
        self.deploy_calls.append((source_text, network))
        return DeploymentResult(success=True, address=self.address, raw_output="logs")

    async def fund(self, to_address: str, amount: str, network: str) -> TransferResult:
        self.fund_calls.append((to_address, amount, network))
        return TransferResult(success=True, tx_hash="0x" + "f" * 64, raw_output="logs")


class FailingOrchestrator(StubOrchestrator):
    async def deploy(self, source_text: str, network: str) -> DeploymentResult:
        self.deploy_calls.append((source_text, network))
        raise DeploymentFailed("Deploy toolchain exited with code 1", raw_output="HH600")


class TimeoutTextGen(StubTextGen):
    async def audit_contract(self, code: str) -> str:
        raise UpstreamTimeout("Text generation service timed out")


class ExplodingTextGen(StubTextGen):
    async def audit_contract(self, code: str) -> str:
        raise RuntimeError("connection reset by peer")


def _dispatcher(
    *,
    probe: StubProbe | None = None,
    textgen: StubTextGen | None = None,
    orchestrator=None,
    gated: list[str] | None = None,
    store: ChallengeStore | None = None,
) -> ActionDispatcher:
    return ActionDispatcher(
        policy=PolicyEngine(PolicyConfig(deny_list=[DENIED]), probe or StubProbe()),
        payments=PaymentGate(PaymentConfig(gated_actions=gated or []), store if store is not None else ChallengeStore()),
        textgen=textgen or StubTextGen(),
        orchestrator=orchestrator or StubOrchestrator(),
    )


def _requests(caller: str | None) -> list[ActionRequest]:
    return [
        ActionRequest(action="research", caller_id=caller, prompt="q"),
        ActionRequest(action="generate", caller_id=caller, prompt="token"),
        ActionRequest(action="audit", caller_id=caller, code="contract X {}"),
        ActionRequest(action="deploy", caller_id=caller, code="contract X {}"),
        ActionRequest(action="transfer", caller_id=caller, to_address=RECIPIENT, amount="0.1"),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("caller", [DENIED, DENIED.upper().replace("0X", "0x")])
async def test_denylisted_caller_is_refused_for_every_action_without_side_effects(caller: str) -> None:
    probe, textgen, orchestrator = StubProbe(), StubTextGen(), StubOrchestrator()
    store = ChallengeStore()
    dispatcher = _dispatcher(
        probe=probe, textgen=textgen, orchestrator=orchestrator, gated=["research", "generate"], store=store
    )

    for request in _requests(caller):
        result = await dispatcher.dispatch(request)
        assert result.status_code == 403
        assert result.body["reason"] == "denylisted"

    assert probe.calls == []
    assert textgen.calls == []
    assert orchestrator.deploy_calls == orchestrator.fund_calls == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_missing_identity_is_policy_violation() -> None:
    result = await _dispatcher().dispatch(ActionRequest(action="research", caller_id=None, prompt="q"))

    assert result.status_code == 403
    assert result.body["success"] is False
    assert "no authenticated wallet" in result.body["error"]


@pytest.mark.asyncio
async def test_unknown_action_is_invalid_action() -> None:
    textgen = StubTextGen()

    result = await _dispatcher(textgen=textgen).dispatch(ActionRequest(action="mint", caller_id=CALLER))

    assert result.status_code == 400
    assert result.body["error"] == "Invalid action"
    assert textgen.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "request_",
    [
        ActionRequest(action="research", caller_id=CALLER, prompt="  "),
        ActionRequest(action="deploy", caller_id=CALLER, code=None),
        ActionRequest(action="transfer", caller_id=CALLER, to_address="0x1234", amount="1"),
        ActionRequest(action="transfer", caller_id=CALLER, to_address=RECIPIENT, amount="-1"),
        ActionRequest(action="transfer", caller_id=CALLER, to_address=RECIPIENT, amount="0"),
        ActionRequest(action="transfer", caller_id=CALLER, to_address=RECIPIENT, amount="1e18"),
        ActionRequest(action="transfer", caller_id=CALLER, to_address=RECIPIENT, amount='1"); evil("'),
    ],
)
async def test_malformed_input_fails_fast(request_: ActionRequest) -> None:
    probe, orchestrator = StubProbe(), StubOrchestrator()

    result = await _dispatcher(probe=probe, orchestrator=orchestrator).dispatch(request_)

    assert result.status_code == 400
    assert probe.calls == []
    assert orchestrator.deploy_calls == orchestrator.fund_calls == []


@pytest.mark.asyncio
async def test_spend_cap_exceeded_never_invokes_orchestrator() -> None:
    orchestrator = StubOrchestrator()
    dispatcher = _dispatcher(probe=StubProbe(EXPENSIVE_GAS), orchestrator=orchestrator)

    result = await dispatcher.dispatch(ActionRequest(action="deploy", caller_id=CALLER, code="contract X {}"))

    assert result.status_code == 403
    assert result.body["reason"] == "spend-cap-exceeded"
    assert Decimal(result.body["estimatedCost"]) == Decimal("0.06")
    assert orchestrator.deploy_calls == []


@pytest.mark.asyncio
async def test_spend_cap_within_ceiling_invokes_orchestrator_once() -> None:
    orchestrator = StubOrchestrator()
    dispatcher = _dispatcher(orchestrator=orchestrator)

    result = await dispatcher.dispatch(
        ActionRequest(action="deploy", caller_id=CALLER, network="mainnet", code="contract X {}")
    )

    assert result.status_code == 200
    assert orchestrator.deploy_calls == [("contract X {}", "mainnet")]
    assert Decimal(result.body["estimatedCost"]) < Decimal("0.05")


@pytest.mark.asyncio
async def test_gated_action_without_proof_issues_challenge_and_does_not_execute() -> None:
    textgen, store = StubTextGen(), ChallengeStore()
    dispatcher = _dispatcher(textgen=textgen, gated=["research"], store=store)

    result = await dispatcher.dispatch(ActionRequest(action="research", caller_id=CALLER, prompt="q"))

    assert result.status_code == 402
    details = result.body["paymentDetails"]
    assert set(details) >= {"amount", "currency", "challengeId", "expiresAt"}
    assert len(store) == 1
    assert textgen.calls == []


@pytest.mark.asyncio
async def test_settled_proof_executes_once_and_replay_fails() -> None:
    textgen = StubTextGen()
    dispatcher = _dispatcher(textgen=textgen, gated=["research"])
    request = ActionRequest(action="research", caller_id=CALLER, prompt="q")

    challenge = (await dispatcher.dispatch(request)).body["paymentDetails"]
    signature = PAYER.sign_message(encode_defunct(text=challenge["message"])).signature.hex()
    header = encode_payment_header(
        PaymentProof(challenge_id=challenge["challengeId"], signature=signature, signer=CALLER)
    )

    paid = await dispatcher.dispatch(request, payment_header=header)
    replay = await dispatcher.dispatch(request, payment_header=header)

    assert paid.status_code == 200
    assert paid.body == {"success": True, "result": "answer to q"}
    assert replay.status_code == 403
    assert textgen.calls == [("research", "q")]


@pytest.mark.asyncio
async def test_policy_runs_before_payment_gate() -> None:
    store = ChallengeStore()
    dispatcher = _dispatcher(probe=StubProbe(EXPENSIVE_GAS), gated=["deploy"], store=store)

    result = await dispatcher.dispatch(ActionRequest(action="deploy", caller_id=CALLER, code="contract X {}"))

    assert result.status_code == 403
    assert len(store) == 0


@pytest.mark.asyncio
async def test_deploy_failure_maps_to_500_with_logs() -> None:
    result = await _dispatcher(orchestrator=FailingOrchestrator()).dispatch(
        ActionRequest(action="deploy", caller_id=CALLER, code="contract X {}")
    )

    assert result.status_code == 500
    assert result.body["logs"] == "HH600"


@pytest.mark.asyncio
async def test_upstream_timeout_maps_to_504() -> None:
    result = await _dispatcher(textgen=TimeoutTextGen()).dispatch(
        ActionRequest(action="audit", caller_id=CALLER, code="contract X {}")
    )

    assert result.status_code == 504
    assert result.body["success"] is False


@pytest.mark.asyncio
async def test_unexpected_effect_error_never_escapes() -> None:
    result = await _dispatcher(textgen=ExplodingTextGen()).dispatch(
        ActionRequest(action="audit", caller_id=CALLER, code="contract X {}")
    )

    assert result.status_code == 500
    assert "connection reset" not in result.body["error"]


@pytest.mark.asyncio
async def test_action_results_have_expected_fields() -> None:
    orchestrator = StubOrchestrator()
    dispatcher = _dispatcher(orchestrator=orchestrator)
    research, generate, audit, _, transfer = _requests(CALLER)

    assert (await dispatcher.dispatch(research)).body == {"success": True, "result": "answer to q"}
    assert (await dispatcher.dispatch(generate)).body == {"success": True, "code": "contract GenContract {}"}
    assert (await dispatcher.dispatch(audit)).body == {"success": True, "report": "looks fine"}
    assert (await dispatcher.dispatch(transfer)).body == {"success": True, "txHash": "0x" + "f" * 64}
    assert orchestrator.fund_calls == [(RECIPIENT, "0.1", "testnet")]


@pytest.mark.asyncio
async def test_end_to_end_testnet_deploy(tmp_path: Path) -> None:
    tool = tmp_path / "fake_hardhat.py"
    tool.write_text(
        'print("Compiled 1 Solidity file successfully")\n'
        'print("Contract deployed to: 0x1111111111111111111111111111111111111111")\n',
        encoding="utf-8",
    )
    project = tmp_path / "project"
    project.mkdir()
    orchestrator = DeploymentOrchestrator(
        DeployConfig(project_dir=str(project), command=[sys.executable, str(tool)], timeout_s=20),
        {"testnet": NetworkProfile(rpc_url="https://rpc.test/", hardhat_network="bscTestnet")},
    )
    probe = StubProbe(CHEAP_GAS)
    dispatcher = _dispatcher(probe=probe, orchestrator=orchestrator)

    result = await dispatcher.dispatch(
        ActionRequest(action="deploy", caller_id="0xa0000000000000000000000000000000000000a1", network="testnet",
                      code="contract GenContract {}")
    )

    assert result.status_code == 200
    assert result.body["success"] is True
    assert result.body["address"] == "0x1111111111111111111111111111111111111111"
    assert result.body["address"] != ADDRESS_NOT_FOUND
    assert probe.calls == ["testnet"]
