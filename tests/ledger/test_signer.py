"""Tests for canonical hashing, input proofs and decryption authorizations."""

from roadtrack.ledger.models import DecryptionAuthorization, EncryptedInput
from roadtrack.ledger.signer import (
    compute_hash,
    derive_input_handle,
    short_principal,
    sign_authorization,
    sign_input,
    sign_payload,
    verify_authorization,
    verify_input_proof,
    verify_payload,
)


def _make_input(user: str, **overrides) -> EncryptedInput:
    fields = dict(ledger_address="ledger-1", user=user, ciphertext="123456789", exponent=0)
    fields.update(overrides)
    handle = derive_input_handle(
        fields["ledger_address"], fields["user"], fields["ciphertext"], fields["exponent"],
    )
    return EncryptedInput(handle=handle, **fields)


class TestHashing:

    def test_key_order_does_not_matter(self):
        assert compute_hash({"a": 1, "b": 2}) == compute_hash({"b": 2, "a": 1})

    def test_handle_depends_on_every_field(self):
        base = derive_input_handle("ledger-1", "user", "99", 0)
        assert base != derive_input_handle("ledger-2", "user", "99", 0)
        assert base != derive_input_handle("ledger-1", "other", "99", 0)
        assert base != derive_input_handle("ledger-1", "user", "98", 0)
        assert base != derive_input_handle("ledger-1", "user", "99", 1)
        assert len(base) == 66


class TestPayloadSignatures:

    def test_sign_verify_roundtrip(self, user_keypair):
        sig = sign_payload("hello", user_keypair)
        assert verify_payload("hello", sig, user_keypair.ss58_address)

    def test_accepts_0x_prefix(self, user_keypair):
        sig = sign_payload("hello", user_keypair)
        assert verify_payload("hello", "0x" + sig, user_keypair.ss58_address)

    def test_rejects_wrong_signer(self, user_keypair, other_keypair):
        sig = sign_payload("hello", user_keypair)
        assert not verify_payload("hello", sig, other_keypair.ss58_address)

    def test_rejects_garbage(self, user_keypair):
        assert not verify_payload("hello", "not-hex", user_keypair.ss58_address)
        assert not verify_payload("hello", "", user_keypair.ss58_address)
        assert not verify_payload("hello", "abcd", "not-an-address")


class TestInputProofs:

    def test_valid_proof(self, user_keypair):
        encrypted = _make_input(user_keypair.ss58_address)
        assert verify_input_proof(encrypted, sign_input(encrypted, user_keypair))

    def test_handle_mismatch(self, user_keypair):
        encrypted = _make_input(user_keypair.ss58_address)
        proof = sign_input(encrypted, user_keypair)
        moved = encrypted.model_copy(update={"ledger_address": "ledger-2"})
        assert not verify_input_proof(moved, proof)

    def test_signed_by_non_owner(self, user_keypair, other_keypair):
        encrypted = _make_input(user_keypair.ss58_address)
        assert not verify_input_proof(encrypted, sign_input(encrypted, other_keypair))


class TestAuthorizations:

    def test_roundtrip(self, user_keypair):
        auth = DecryptionAuthorization(
            user=user_keypair.ss58_address,
            ledger_addresses=["ledger-1"],
            start_timestamp=1_700_000_000,
            duration_days=10,
        )
        auth.signature = sign_authorization(auth, user_keypair)
        assert verify_authorization(auth)

    def test_unsigned_rejected(self, user_keypair):
        auth = DecryptionAuthorization(
            user=user_keypair.ss58_address,
            ledger_addresses=["ledger-1"],
            start_timestamp=0,
            duration_days=1,
        )
        assert not verify_authorization(auth)

    def test_adding_a_ledger_breaks_signature(self, user_keypair):
        auth = DecryptionAuthorization(
            user=user_keypair.ss58_address,
            ledger_addresses=["ledger-1"],
            start_timestamp=0,
            duration_days=1,
        )
        auth.signature = sign_authorization(auth, user_keypair)
        auth.ledger_addresses.append("ledger-2")
        assert not verify_authorization(auth)


class TestShortPrincipal:

    def test_truncates_address(self, user_keypair):
        assert short_principal(user_keypair.ss58_address) == user_keypair.ss58_address[:16]

    def test_missing_principal(self):
        assert short_principal("") == "none"
        assert short_principal(None) == "none"
