"""Payment gate — the 402 challenge/response handshake for payable actions."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct

from tollgate.config import PaymentConfig
from tollgate.errors import PaymentInvalid
from tollgate.models import ActionRequest
from tollgate.payments.challenge import ChallengeStore, PaymentChallenge, decode_payment_header

logger = structlog.get_logger()


def recover_signer(message: str, signature: str) -> str:
    """Address that produced `signature` over the personal-sign `message`."""
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as exc:
        raise PaymentInvalid(f"Invalid signature: {exc}") from exc


class PaymentGate:
    """Issues challenges for payable actions and settles them against proofs."""

    def __init__(self, config: PaymentConfig, store: ChallengeStore) -> None:
        self.config = config
        self.store = store

    def requires_payment(self, action: str) -> bool:
        return action in self.config.gated_actions

    def price_for(self, action: str) -> str:
        raw = self.config.prices.get(action, self.config.default_price)
        try:
            return format(Decimal(raw).normalize(), "f")
        except InvalidOperation:
            return raw

    def check(self, request: ActionRequest, payment_header: str | None) -> PaymentChallenge | None:
        """Return a challenge when payment is still owed, None once it is settled.

        Raises PaymentInvalid for any proof that does not settle a live
        challenge for this exact request and caller.
        """
        if not self.requires_payment(request.action):
            return None

        caller = (request.caller_id or "").strip().lower()
        if not payment_header:
            challenge = self.store.issue(
                amount=self.price_for(request.action),
                currency=self.config.currency,
                ttl_seconds=self.config.ttl_seconds,
                fingerprint=request.fingerprint(),
                caller_id=caller,
            )
            logger.info(
                "payment.challenge_issued",
                challenge_id=challenge.challenge_id,
                action=request.action,
                amount=challenge.amount,
                currency=challenge.currency,
                expires_at=challenge.expires_at,
            )
            return challenge

        proof = decode_payment_header(payment_header)

        # Take first: whatever happens next, this challenge cannot be used again.
        challenge = self.store.take(proof.challenge_id)
        if challenge is None:
            logger.warning("payment.invalid", reason="unknown_or_expired", challenge_id=proof.challenge_id)
            raise PaymentInvalid("Payment challenge is unknown, expired, or already used")

        if challenge.fingerprint != request.fingerprint():
            logger.warning("payment.invalid", reason="request_mismatch", challenge_id=challenge.challenge_id)
            raise PaymentInvalid("Payment proof does not match this request")

        signer = proof.signer.lower()
        if signer != challenge.caller_id or signer != caller:
            logger.warning(
                "payment.invalid", reason="signer_mismatch", challenge_id=challenge.challenge_id, signer=signer
            )
            raise PaymentInvalid("Payment signer does not match the caller")

        recovered = recover_signer(challenge.message(), proof.signature)
        if recovered.lower() != signer:
            logger.warning(
                "payment.invalid", reason="bad_signature", challenge_id=challenge.challenge_id, signer=signer
            )
            raise PaymentInvalid("Payment signature does not match the signer")

        logger.info(
            "payment.settled",
            challenge_id=challenge.challenge_id,
            action=request.action,
            amount=challenge.amount,
            currency=challenge.currency,
        )
        return None
