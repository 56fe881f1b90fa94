"""Pay-per-call challenge protocol."""

from tollgate.payments.challenge import (
    PAYMENT_HEADER,
    ChallengeStore,
    PaymentChallenge,
    PaymentProof,
    decode_payment_header,
    encode_payment_header,
)
from tollgate.payments.gate import PaymentGate

__all__ = [
    "PAYMENT_HEADER",
    "ChallengeStore",
    "PaymentChallenge",
    "PaymentGate",
    "PaymentProof",
    "decode_payment_header",
    "encode_payment_header",
]
