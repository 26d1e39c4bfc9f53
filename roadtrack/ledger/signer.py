"""Canonical hashing and keypair signatures for ledger payloads.

Users sign the handle of each encrypted input (the validity proof) and the
decryption authorizations they hand to the oracle. Verification only needs
the signer's SS58 address.
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import DecryptionAuthorization, EncryptedInput


def compute_hash(data: Any) -> str:
    """SHA256 hex digest of the canonical JSON encoding of data."""
    raw = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode()).hexdigest()


def derive_input_handle(
    ledger_address: str, user: str, ciphertext: str, exponent: int,
) -> str:
    """Handle committing an encrypted input to its ledger and user."""
    digest = compute_hash({
        "ledger": ledger_address,
        "user": user,
        "ciphertext": ciphertext,
        "exponent": exponent,
    })
    return f"0x{digest}"


def sign_payload(payload: str, keypair: Any) -> str:
    """Sign a payload string. Returns a hex-encoded signature."""
    signature = keypair.sign(payload.encode())
    return signature.hex() if isinstance(signature, bytes) else str(signature)


def verify_payload(payload: str, signature: str, ss58_address: str) -> bool:
    """Check a hex signature over payload against an SS58 address."""
    import bittensor as bt

    if not signature or not ss58_address:
        return False
    try:
        sig_bytes = bytes.fromhex(signature.removeprefix("0x"))
    except ValueError:
        return False

    try:
        keypair = bt.Keypair(ss58_address=ss58_address)
        return keypair.verify(payload.encode(), sig_bytes)
    except Exception:
        return False


def short_principal(principal: str | None) -> str:
    """Log-safe prefix of an SS58 address."""
    return principal[:16] if principal else "none"


# -- Input proofs --


def sign_input(encrypted: EncryptedInput, keypair: Any) -> str:
    """Produce the validity proof for an encrypted input."""
    return sign_payload(encrypted.handle, keypair)


def verify_input_proof(encrypted: EncryptedInput, proof: str) -> bool:
    """True if the handle matches the payload and the user signed it."""
    expected = derive_input_handle(
        encrypted.ledger_address,
        encrypted.user,
        encrypted.ciphertext,
        encrypted.exponent,
    )
    if expected != encrypted.handle:
        return False
    return verify_payload(encrypted.handle, proof, encrypted.user)


# -- Decryption authorizations --


def _authorization_signing_payload(auth: DecryptionAuthorization) -> str:
    data = auth.model_dump(mode="json")
    data.pop("signature", None)
    return compute_hash(data)


def sign_authorization(auth: DecryptionAuthorization, keypair: Any) -> str:
    """Sign a decryption authorization (signature field is ignored)."""
    return sign_payload(_authorization_signing_payload(auth), keypair)


def verify_authorization(auth: DecryptionAuthorization) -> bool:
    """Verify the authorization was signed by auth.user."""
    if not auth.signature:
        return False
    return verify_payload(
        _authorization_signing_payload(auth), auth.signature, auth.user,
    )


__all__ = [
    "compute_hash",
    "derive_input_handle",
    "short_principal",
    "sign_authorization",
    "sign_input",
    "sign_payload",
    "verify_authorization",
    "verify_input_proof",
    "verify_payload",
]
