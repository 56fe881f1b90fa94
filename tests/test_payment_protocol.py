from __future__ import annotations

import base64
import json
import threading

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from tollgate.config import PaymentConfig
from tollgate.errors import PaymentInvalid
from tollgate.models import ActionRequest
from tollgate.payments import (
    ChallengeStore,
    PaymentGate,
    PaymentProof,
    decode_payment_header,
    encode_payment_header,
)

PAYER = Account.from_key("0x" + "11" * 32)
OTHER = Account.from_key("0x" + "22" * 32)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _sign(account, message: str) -> str:
    return account.sign_message(encode_defunct(text=message)).signature.hex()


def _header(challenge, account=PAYER, signer: str | None = None) -> str:
    proof = PaymentProof(
        challenge_id=challenge.challenge_id,
        signature=_sign(account, challenge.message()),
        signer=signer or account.address,
    )
    return encode_payment_header(proof)


def _request(caller: str = PAYER.address, prompt: str = "what is gas?") -> ActionRequest:
    return ActionRequest(action="research", caller_id=caller, prompt=prompt)


def _gate(clock: FakeClock | None = None, **overrides) -> PaymentGate:
    store = ChallengeStore(clock=clock or FakeClock())
    return PaymentGate(PaymentConfig(**overrides), store)


def test_ungated_action_needs_no_payment() -> None:
    gate = _gate(gated_actions=["research"])
    request = ActionRequest(action="audit", caller_id=PAYER.address, code="contract X {}")

    assert gate.check(request, None) is None
    assert len(gate.store) == 0


def test_first_submission_issues_exactly_one_challenge() -> None:
    gate = _gate(prices={"research": "0.0010"}, currency="BNB", ttl_seconds=60)

    challenge = gate.check(_request(), None)

    assert challenge is not None
    assert challenge.amount == "0.001"
    assert challenge.currency == "BNB"
    assert challenge.expires_at - challenge.issued_at == 60
    assert challenge.fingerprint == _request().fingerprint()
    assert len(gate.store) == 1
    details = challenge.to_details()
    assert details["challengeId"] == challenge.challenge_id
    assert challenge.challenge_id in details["message"]


def test_each_request_gets_its_own_challenge() -> None:
    gate = _gate()

    first = gate.check(_request(), None)
    second = gate.check(_request(), None)

    assert first.challenge_id != second.challenge_id
    assert len(gate.store) == 2


def test_valid_proof_settles_and_consumes_challenge() -> None:
    gate = _gate()
    challenge = gate.check(_request(), None)
    header = _header(challenge)

    assert gate.check(_request(), header) is None
    assert len(gate.store) == 0

    with pytest.raises(PaymentInvalid):
        gate.check(_request(), header)


def test_caller_match_is_case_insensitive() -> None:
    gate = _gate()
    challenge = gate.check(_request(caller=PAYER.address.lower()), None)

    assert gate.check(_request(caller=PAYER.address.upper().replace("0X", "0x")), _header(challenge)) is None


def test_expired_challenge_rejects_valid_proof() -> None:
    clock = FakeClock()
    gate = _gate(clock, ttl_seconds=30)
    challenge = gate.check(_request(), None)
    header = _header(challenge)

    clock.now += 30

    with pytest.raises(PaymentInvalid, match="expired"):
        gate.check(_request(), header)


def test_expired_challenges_are_purged_on_issue() -> None:
    clock = FakeClock()
    gate = _gate(clock, ttl_seconds=30)
    gate.check(_request(), None)

    clock.now += 31
    gate.check(_request(), None)

    assert len(gate.store) == 1


def test_proof_from_another_signer_is_rejected() -> None:
    gate = _gate()
    challenge = gate.check(_request(), None)

    with pytest.raises(PaymentInvalid, match="signer"):
        gate.check(_request(), _header(challenge, account=OTHER))


def test_forged_signature_is_rejected_and_burns_challenge() -> None:
    gate = _gate()
    challenge = gate.check(_request(), None)
    forged = _header(challenge, account=OTHER, signer=PAYER.address)

    with pytest.raises(PaymentInvalid, match="signature"):
        gate.check(_request(), forged)
    with pytest.raises(PaymentInvalid):
        gate.check(_request(), _header(challenge))


def test_proof_is_bound_to_the_original_request() -> None:
    gate = _gate()
    challenge = gate.check(_request(prompt="cheap question"), None)

    with pytest.raises(PaymentInvalid, match="does not match this request"):
        gate.check(_request(prompt="a different question"), _header(challenge))


def test_garbage_signature_is_payment_invalid() -> None:
    gate = _gate()
    challenge = gate.check(_request(), None)
    header = encode_payment_header(
        PaymentProof(challenge_id=challenge.challenge_id, signature="0x1234", signer=PAYER.address)
    )

    with pytest.raises(PaymentInvalid, match="Invalid signature"):
        gate.check(_request(), header)


def test_concurrent_takes_settle_once() -> None:
    store = ChallengeStore()
    challenge = store.issue(amount="1", currency="BNB", ttl_seconds=60, fingerprint="f", caller_id="c")
    results: list[object] = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        results.append(store.take(challenge.challenge_id))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert [item for item in results if item is not None] == [challenge]


def test_decode_payment_header_accepts_plain_json() -> None:
    raw = json.dumps({"challengeId": "abc", "signature": "0xsig", "signer": "0xme"})

    proof = decode_payment_header(raw)

    assert proof == PaymentProof(challenge_id="abc", signature="0xsig", signer="0xme")


def test_payment_header_round_trips_through_base64() -> None:
    proof = PaymentProof(challenge_id="abc", signature="0xsig", signer="0xme")

    assert decode_payment_header(encode_payment_header(proof)) == proof


@pytest.mark.parametrize(
    "value",
    [
        "",
        "%%%not-base64%%%",
        base64.b64encode(b"[1, 2]").decode(),
        base64.b64encode(json.dumps({"challengeId": "abc"}).encode()).decode(),
    ],
)
def test_decode_payment_header_rejects_malformed_values(value: str) -> None:
    with pytest.raises(PaymentInvalid):
        decode_payment_header(value)
