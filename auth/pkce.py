from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

VERIFIER_BYTES = 32
STATE_BYTES = 16


@dataclass(frozen=True)
class PKCEMaterial:
    code_verifier: str
    code_challenge: str
    state: str


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    return base64url_encode(secrets.token_bytes(VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64url_encode(digest)


def generate_state() -> str:
    return base64url_encode(secrets.token_bytes(STATE_BYTES))


def generate_pkce_material() -> PKCEMaterial:
    verifier = generate_code_verifier()
    return PKCEMaterial(
        code_verifier=verifier,
        code_challenge=generate_code_challenge(verifier),
        state=generate_state(),
    )
