"""Payment challenges, proofs, and the store that keeps them single-use."""

from __future__ import annotations

import base64
import binascii
import json
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from tollgate.errors import PaymentInvalid

PAYMENT_HEADER = "X-PAYMENT"


@dataclass(frozen=True)
class PaymentChallenge:
    """A server-issued, time-bounded payment requirement for one pending action."""

    challenge_id: str
    amount: str
    currency: str
    issued_at: int
    expires_at: int
    fingerprint: str
    caller_id: str

    def message(self) -> str:
        """Canonical text the payer signs (EIP-191 personal message)."""
        return (
            "Tollgate payment authorization\n"
            f"challenge: {self.challenge_id}\n"
            f"amount: {self.amount} {self.currency}\n"
            f"action: {self.fingerprint}\n"
            f"issued: {self.issued_at}"
        )

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_details(self) -> dict:
        return {
            "amount": self.amount,
            "currency": self.currency,
            "challengeId": self.challenge_id,
            "issuedAt": self.issued_at,
            "expiresAt": self.expires_at,
            "message": self.message(),
        }


@dataclass(frozen=True)
class PaymentProof:
    challenge_id: str
    signature: str
    signer: str


def decode_payment_header(value: str) -> PaymentProof:
    """Parse an X-PAYMENT header: base64 JSON, or plain JSON."""
    text = (value or "").strip()
    if not text:
        raise PaymentInvalid("Empty payment header")
    try:
        if text.startswith("{"):
            data = json.loads(text)
        else:
            data = json.loads(base64.b64decode(text, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise PaymentInvalid(f"Malformed payment header: {exc}") from exc

    if not isinstance(data, dict):
        raise PaymentInvalid("Malformed payment header: expected an object")
    fields = {key: data.get(key) for key in ("challengeId", "signature", "signer")}
    missing = [key for key, item in fields.items() if not isinstance(item, str) or not item.strip()]
    if missing:
        raise PaymentInvalid(f"Payment header missing {', '.join(missing)}")
    return PaymentProof(
        challenge_id=fields["challengeId"].strip(),
        signature=fields["signature"].strip(),
        signer=fields["signer"].strip(),
    )


def encode_payment_header(proof: PaymentProof) -> str:
    payload = {"challengeId": proof.challenge_id, "signature": proof.signature, "signer": proof.signer}
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class ChallengeStore:
    """Outstanding challenges keyed by id.

    Insert and take happen under one lock so two concurrent resubmissions of
    the same proof can never both obtain the challenge.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._challenges: dict[str, PaymentChallenge] = {}

    def issue(
        self,
        *,
        amount: str,
        currency: str,
        ttl_seconds: int,
        fingerprint: str,
        caller_id: str,
    ) -> PaymentChallenge:
        issued_at = int(self._clock())
        challenge = PaymentChallenge(
            challenge_id=uuid.uuid4().hex,
            amount=amount,
            currency=currency,
            issued_at=issued_at,
            expires_at=issued_at + ttl_seconds,
            fingerprint=fingerprint,
            caller_id=caller_id,
        )
        with self._lock:
            self._purge_expired_locked()
            self._challenges[challenge.challenge_id] = challenge
        return challenge

    def take(self, challenge_id: str) -> PaymentChallenge | None:
        """Remove and return an unexpired challenge; None if unknown or expired."""
        with self._lock:
            challenge = self._challenges.pop(challenge_id, None)
        if challenge is None or challenge.is_expired(self._clock()):
            return None
        return challenge

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def _purge_expired_locked(self) -> None:
        now = self._clock()
        expired = [cid for cid, item in self._challenges.items() if item.is_expired(now)]
        for cid in expired:
            del self._challenges[cid]
