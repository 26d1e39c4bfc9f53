"""Confidential integer capability backed by the Paillier cryptosystem.

The Coprocessor plays the role of the confidential-computing network:
it holds the key pair, verifies encrypted inputs, performs homomorphic
add/subtract, keeps the per-handle access list and answers reveal
requests from principals that hold a grant.

The ledger only ever sees ConfidentialValue handles. Plaintexts cross the
boundary in exactly two places: encrypt_input (client side, before
submission) and Coprocessor.reveal (to an authorized principal).
"""

from __future__ import annotations

import json
import os
import secrets
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import bittensor as bt
from phe import paillier

from .errors import AccessDenied, InvalidProof, UnknownHandle
from .models import DecryptionAuthorization, EncryptedInput
from .signer import (
    compute_hash,
    derive_input_handle,
    short_principal,
    sign_input,
    verify_authorization,
    verify_input_proof,
)

if TYPE_CHECKING:
    from .store.interface import CiphertextStore


DEFAULT_KEY_LENGTH = 2048

# Score range accepted by encrypt_input (0-100 safety score).
MIN_SCORE = 0
MAX_SCORE = 100


@dataclass(frozen=True)
class ConfidentialValue:
    """Opaque handle to an encrypted signed integer.

    Equality is by handle only. The ciphertext is never exposed to ledger
    logic; arithmetic and grants go through the owning coprocessor.
    """

    handle: str
    ledger_address: str
    ciphertext: paillier.EncryptedNumber = field(repr=False, compare=False)
    coprocessor: Coprocessor = field(repr=False, compare=False)

    def add(self, other: ConfidentialValue) -> ConfidentialValue:
        return self.coprocessor.add(self, other)

    def subtract(self, other: ConfidentialValue) -> ConfidentialValue:
        return self.coprocessor.subtract(self, other)

    def grant(self, principal: str) -> None:
        self.coprocessor.grant(self, principal)


class Coprocessor:
    """Key holder, homomorphic evaluator, ACL and decryption oracle."""

    def __init__(
        self,
        public_key: paillier.PaillierPublicKey,
        private_key: paillier.PaillierPrivateKey,
        store: CiphertextStore | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.public_key = public_key
        self._private_key = private_key
        self._store = store
        self._clock = clock or (lambda: int(time.time()))
        self._values: dict[str, ConfidentialValue] = {}
        self._acl: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    # -- Construction --

    @classmethod
    def generate(cls, key_length: int = DEFAULT_KEY_LENGTH, **kwargs: Any) -> Coprocessor:
        public_key, private_key = paillier.generate_paillier_keypair(n_length=key_length)
        return cls(public_key, private_key, **kwargs)

    @classmethod
    def from_keyfile(
        cls, path: str | Path, key_length: int = DEFAULT_KEY_LENGTH, **kwargs: Any,
    ) -> Coprocessor:
        """Load the key pair from a JSON key file, creating it if missing."""
        path = Path(path).expanduser()
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            public_key = paillier.PaillierPublicKey(int(data["n"]))
            private_key = paillier.PaillierPrivateKey(
                public_key, int(data["p"]), int(data["q"]),
            )
            bt.logging.info({"coprocessor": {"event": "key_loaded", "path": str(path)}})
            return cls(public_key, private_key, **kwargs)

        public_key, private_key = paillier.generate_paillier_keypair(n_length=key_length)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({
            "n": str(public_key.n),
            "p": str(private_key.p),
            "q": str(private_key.q),
        })
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(payload)
        bt.logging.info({"coprocessor": {"event": "key_created", "path": str(path), "key_length": key_length}})
        return cls(public_key, private_key, **kwargs)

    def restore(self) -> None:
        """Reload ciphertexts and grants from the attached store."""
        if self._store is None:
            return
        with self._lock:
            for handle, ledger_address, ciphertext, exponent in self._store.load_ciphertexts():
                number = paillier.EncryptedNumber(self.public_key, int(ciphertext), exponent)
                self._values[handle] = ConfidentialValue(handle, ledger_address, number, self)
            for handle, principal in self._store.load_grants():
                self._acl.setdefault(handle, set()).add(principal)
        bt.logging.info({"coprocessor": {"event": "restored", "handles": len(self._values)}})

    # -- Registry --

    def _register(self, handle: str, ledger_address: str, number: paillier.EncryptedNumber) -> ConfidentialValue:
        with self._lock:
            existing = self._values.get(handle)
            if existing is not None:
                return existing
            value = ConfidentialValue(handle, ledger_address, number, self)
            if self._store is not None:
                self._store.save_ciphertext(
                    handle, ledger_address, str(number.ciphertext(be_secure=False)), number.exponent,
                )
            self._values[handle] = value
            return value

    def lookup(self, handle: str) -> ConfidentialValue:
        value = self._values.get(handle)
        if value is None:
            raise UnknownHandle(f"unknown handle {handle}")
        return value

    # -- Input verification --

    def verify_input(
        self,
        encrypted: EncryptedInput,
        proof: str,
        ledger_address: str,
        user: str,
    ) -> ConfidentialValue:
        """Accept an encrypted input bound to (ledger_address, user).

        Raises InvalidProof on a binding, handle, signature or exponent mismatch.
        """
        def _reject(reason: str) -> InvalidProof:
            bt.logging.warning({"coprocessor": {"event": "input_rejected", "user": short_principal(user), "reason": reason}})
            return InvalidProof(reason)

        if encrypted.ledger_address != ledger_address:
            raise _reject("ledger_mismatch")
        if encrypted.user != user:
            raise _reject("user_mismatch")
        if not verify_input_proof(encrypted, proof):
            raise _reject("bad_proof")
        # Integers only: a nonzero exponent decrypts to a scaled or fractional value.
        if encrypted.exponent != 0:
            raise _reject("bad_exponent")

        ciphertext = int(encrypted.ciphertext)
        if not 0 < ciphertext < self.public_key.nsquare:
            raise _reject("ciphertext_out_of_range")

        number = paillier.EncryptedNumber(self.public_key, ciphertext, encrypted.exponent)
        return self._register(encrypted.handle, ledger_address, number)

    # -- Homomorphic ops --

    def _derive(self, op: str, lhs: ConfidentialValue, rhs: ConfidentialValue, number: paillier.EncryptedNumber) -> ConfidentialValue:
        if lhs.ledger_address != rhs.ledger_address:
            raise ValueError("operands belong to different ledgers")
        handle = "0x" + compute_hash({
            "op": op,
            "lhs": lhs.handle,
            "rhs": rhs.handle,
            "nonce": secrets.token_hex(16),
        })
        return self._register(handle, lhs.ledger_address, number)

    def add(self, lhs: ConfidentialValue, rhs: ConfidentialValue) -> ConfidentialValue:
        return self._derive("add", lhs, rhs, lhs.ciphertext + rhs.ciphertext)

    def subtract(self, lhs: ConfidentialValue, rhs: ConfidentialValue) -> ConfidentialValue:
        return self._derive("sub", lhs, rhs, lhs.ciphertext - rhs.ciphertext)

    # -- Access control --

    def grant(self, value: ConfidentialValue, principal: str) -> None:
        """Allow principal to reveal value. Idempotent."""
        grants = self.missing_grants([value], principal)
        self.persist_grants(grants)
        self.apply_grants(grants)

    def missing_grants(
        self, values: list[ConfidentialValue | None], principal: str,
    ) -> list[tuple[str, str]]:
        """(handle, principal) pairs not granted yet, without duplicates.

        Callers that persist grants together with other state write these
        first and then call apply_grants.
        """
        pending: dict[str, None] = {}
        for value in values:
            if value is not None and not self.is_allowed(value.handle, principal):
                pending[value.handle] = None
        return [(handle, principal) for handle in pending]

    def persist_grants(self, grants: list[tuple[str, str]]) -> None:
        if self._store is not None:
            for handle, principal in grants:
                self._store.save_grant(handle, principal)

    def apply_grants(self, grants: list[tuple[str, str]]) -> None:
        """Record already-persisted grants in the in-memory ACL."""
        with self._lock:
            for handle, principal in grants:
                self._acl.setdefault(handle, set()).add(principal)

    def is_allowed(self, handle: str, principal: str) -> bool:
        return principal in self._acl.get(handle, ())

    def grantees(self, handle: str) -> frozenset[str]:
        return frozenset(self._acl.get(handle, ()))

    # -- Decryption oracle --

    def reveal(
        self,
        handle: str,
        principal: str,
        authorization: DecryptionAuthorization,
        now: int | None = None,
    ) -> int:
        """Decrypt handle for principal, who must hold a grant and sign for it."""
        value = self.lookup(handle)
        now = self._clock() if now is None else now

        def _deny(reason: str) -> AccessDenied:
            bt.logging.warning({"coprocessor": {"event": "reveal_denied", "principal": short_principal(principal), "handle": handle[:18], "reason": reason}})
            return AccessDenied(reason)

        if authorization.user != principal:
            raise _deny("principal_mismatch")
        if not verify_authorization(authorization):
            raise _deny("bad_signature")
        if not authorization.covers(now):
            raise _deny("authorization_not_current")
        if value.ledger_address not in authorization.ledger_addresses:
            raise _deny("ledger_not_authorized")
        if not self.is_allowed(handle, principal):
            raise _deny("no_grant")

        return self._private_key.decrypt(value.ciphertext)


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


def public_key_from_n(n: int | str) -> paillier.PaillierPublicKey:
    return paillier.PaillierPublicKey(int(n))


def encrypt_input(
    public_key: paillier.PaillierPublicKey,
    keypair: Any,
    ledger_address: str,
    score: int,
) -> tuple[EncryptedInput, str]:
    """Encrypt a score for submission to ledger_address.

    Returns the encrypted input and its validity proof (the user's
    signature over the handle).
    """
    if isinstance(score, bool) or not isinstance(score, int):
        raise TypeError("score must be an integer")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValueError(f"score must be between {MIN_SCORE} and {MAX_SCORE}")

    number = public_key.encrypt(score)
    ciphertext = str(number.ciphertext())
    user = keypair.ss58_address
    encrypted = EncryptedInput(
        handle=derive_input_handle(ledger_address, user, ciphertext, number.exponent),
        ciphertext=ciphertext,
        exponent=number.exponent,
        ledger_address=ledger_address,
        user=user,
    )
    return encrypted, sign_input(encrypted, keypair)


__all__ = [
    "DEFAULT_KEY_LENGTH",
    "MAX_SCORE",
    "MIN_SCORE",
    "ConfidentialValue",
    "Coprocessor",
    "encrypt_input",
    "public_key_from_n",
]
