from __future__ import annotations

import base64
import hashlib
import json

from cryptography.fernet import Fernet, InvalidToken


def derive_key(secret: str) -> bytes:
    """Derive a stable Fernet key from the configured session secret."""
    digest = hashlib.sha256(f"supacheck:{secret}".encode()).digest()
    return base64.urlsafe_b64encode(digest)


def seal(payload: dict, key: bytes) -> str:
    data = json.dumps(payload, separators=(",", ":")).encode()
    return Fernet(key).encrypt(data).decode()


def unseal(token: str, key: bytes) -> dict:
    try:
        data = Fernet(key).decrypt(token.encode())
    except (InvalidToken, ValueError) as error:
        raise RuntimeError("Sealed cookie verification failed.") from error
    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise RuntimeError("Sealed cookie payload must be a JSON object.")
    return payload
