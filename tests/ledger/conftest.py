"""Shared fixtures for ledger tests: keypairs, a controllable clock and a
small Paillier key so the suite stays fast."""

from __future__ import annotations

import bittensor as bt
import pytest
from phe import paillier

from roadtrack.ledger.confidential import Coprocessor, encrypt_input
from roadtrack.ledger.ledger import ScoreLedger
from roadtrack.ledger.models import DecryptionAuthorization
from roadtrack.ledger.signer import sign_authorization
from roadtrack.ledger.state import LedgerConfig


DAY = 24 * 3600
HOUR = 3600
START = 1_700_000_000


class FakeClock:
    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def paillier_keys():
    return paillier.generate_paillier_keypair(n_length=512)


@pytest.fixture(scope="session")
def admin_keypair():
    return bt.Keypair.create_from_uri("//Alice")


@pytest.fixture(scope="session")
def user_keypair():
    return bt.Keypair.create_from_uri("//Bob")


@pytest.fixture(scope="session")
def other_keypair():
    return bt.Keypair.create_from_uri("//Charlie")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coprocessor(paillier_keys, clock):
    public_key, private_key = paillier_keys
    return Coprocessor(public_key, private_key, clock=clock)


@pytest.fixture
def ledger_config(admin_keypair):
    return LedgerConfig(address="roadtrack-ledger-test", admin=admin_keypair.ss58_address)


@pytest.fixture
def ledger(ledger_config, coprocessor, clock):
    return ScoreLedger(ledger_config, coprocessor, clock=clock)


@pytest.fixture
def submit():
    """submit(ledger, keypair, score, mileage_level=1) -> UserStats"""
    def _submit(ledger, keypair, score, mileage_level=1):
        encrypted, proof = encrypt_input(
            ledger.coprocessor.public_key, keypair, ledger.config.address, score,
        )
        return ledger.submit(keypair.ss58_address, encrypted, proof, mileage_level)
    return _submit


def make_authorization(keypair, ledger_addresses, start, duration_days=30):
    auth = DecryptionAuthorization(
        user=keypair.ss58_address,
        ledger_addresses=list(ledger_addresses),
        start_timestamp=start,
        duration_days=duration_days,
    )
    auth.signature = sign_authorization(auth, keypair)
    return auth


@pytest.fixture
def authorize():
    """authorize(keypair, ledger_addresses, start, duration_days=30)"""
    return make_authorization


@pytest.fixture
def reveal(clock):
    """reveal(coprocessor, keypair, handle, ledger_address) -> int"""
    def _reveal(coprocessor, keypair, handle, ledger_address):
        auth = make_authorization(keypair, [ledger_address], clock())
        return coprocessor.reveal(handle, keypair.ss58_address, auth)
    return _reveal
