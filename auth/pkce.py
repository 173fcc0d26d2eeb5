from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128


@dataclass(frozen=True)
class AuthorizationState:
    code_verifier: str
    code_challenge: str
    state: str


def generate_code_verifier() -> str:
    while True:
        verifier = secrets.token_urlsafe(64)
        if VERIFIER_MIN_LENGTH <= len(verifier) <= VERIFIER_MAX_LENGTH:
            return verifier


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def begin() -> AuthorizationState:
    verifier = generate_code_verifier()
    return AuthorizationState(
        code_verifier=verifier,
        code_challenge=generate_code_challenge(verifier),
        state=generate_state(),
    )
