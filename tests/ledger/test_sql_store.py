"""Tests for SQL persistence and restoring a ledger after a restart."""

import pytest

from roadtrack.ledger.confidential import Coprocessor
from roadtrack.ledger.errors import CadenceViolation
from roadtrack.ledger.ledger import ScoreLedger
from roadtrack.ledger.state import LedgerConfig
from roadtrack.ledger.store import sql as sql_store
from roadtrack.ledger.store.interface import CiphertextStore, LedgerStore
from roadtrack.ledger.store.sql import SqlLedgerStore


DAY = 24 * 3600


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


def _open(db_url, paillier_keys, clock, config):
    store = SqlLedgerStore(url=db_url)
    public_key, private_key = paillier_keys
    coprocessor = Coprocessor(public_key, private_key, store=store, clock=clock)
    return store, ScoreLedger.restore(config, coprocessor, store, clock=clock)


class TestSqlLedgerStore:

    def test_implements_both_protocols(self):
        store = SqlLedgerStore(url="sqlite://")
        try:
            assert isinstance(store, LedgerStore)
            assert isinstance(store, CiphertextStore)
        finally:
            store.close()

    def test_empty_database(self):
        store = SqlLedgerStore(url="sqlite://")
        try:
            assert store.load_settings() is None
            assert store.load_users() == {}
            assert store.load_ciphertexts() == []
            assert store.load_grants() == []
        finally:
            store.close()

    def test_settings_roundtrip(self):
        store = SqlLedgerStore(url="sqlite://")
        try:
            store.save_settings(LedgerConfig(address="l", admin="a", test_mode=True))
            settings = store.load_settings()
            assert (settings.address, settings.admin, settings.test_mode) == ("l", "a", True)
        finally:
            store.close()

    def test_grants_are_deduplicated(self):
        store = SqlLedgerStore(url="sqlite://")
        try:
            handle = "0x" + "cd" * 32
            store.save_grant(handle, "p")
            store.save_grant(handle, "p")
            assert store.load_grants() == [(handle, "p")]
        finally:
            store.close()


class TestRestore:

    def test_state_survives_restart(
        self, db_url, paillier_keys, clock, ledger_config, admin_keypair, user_keypair, submit, reveal,
    ):
        store, ledger = _open(db_url, paillier_keys, clock, ledger_config)
        for score in (70, 80, 90):
            submit(ledger, user_keypair, score, mileage_level=2)
            clock.advance(DAY)
        user = user_keypair.ss58_address
        before = [ledger.get_record(user, i) for i in range(3)]
        store.close()

        config = LedgerConfig(address=ledger_config.address, admin=admin_keypair.ss58_address)
        store, restored = _open(db_url, paillier_keys, clock, config)
        try:
            stats = restored.get_user_stats(user)
            assert stats.record_count == 3
            assert stats.consecutive_days == 3
            assert [restored.get_record(user, i) for i in range(3)] == before

            total_handle, count = restored.get_average_data(user)
            assert count == 3
            assert reveal(restored.coprocessor, user_keypair, total_handle, config.address) == 240
            trend = restored.get_trend(user)
            assert reveal(restored.coprocessor, user_keypair, trend, config.address) == 10

            # Aggregates keep extending from the persisted state
            submit(restored, user_keypair, 100)
            total_handle, count = restored.get_average_data(user)
            assert count == 4
            assert reveal(restored.coprocessor, user_keypair, total_handle, config.address) == 340
            assert restored.get_user_stats(user).consecutive_days == 4
        finally:
            store.close()

    def test_cadence_survives_restart(self, db_url, paillier_keys, clock, ledger_config, user_keypair, submit):
        store, ledger = _open(db_url, paillier_keys, clock, ledger_config)
        submit(ledger, user_keypair, 70)
        store.close()

        store, restored = _open(db_url, paillier_keys, clock, ledger_config)
        try:
            with pytest.raises(CadenceViolation):
                submit(restored, user_keypair, 80)
        finally:
            store.close()

    def test_persisted_settings_win_over_config(self, db_url, paillier_keys, clock, ledger_config, admin_keypair, user_keypair):
        store, ledger = _open(db_url, paillier_keys, clock, ledger_config)
        ledger.set_test_mode(admin_keypair.ss58_address, True)
        store.close()

        config = LedgerConfig(address="different-ledger", admin=user_keypair.ss58_address)
        store, restored = _open(db_url, paillier_keys, clock, config)
        try:
            assert restored.config.address == ledger_config.address
            assert restored.admin == admin_keypair.ss58_address
            assert restored.is_test_mode()
        finally:
            store.close()

    def test_grants_survive_restart(self, db_url, paillier_keys, clock, ledger_config, user_keypair, other_keypair, submit):
        store, ledger = _open(db_url, paillier_keys, clock, ledger_config)
        submit(ledger, user_keypair, 70)
        handle = ledger.get_record(user_keypair.ss58_address, 0)[2]
        store.close()

        store, restored = _open(db_url, paillier_keys, clock, ledger_config)
        try:
            assert restored.coprocessor.grantees(handle) == frozenset({user_keypair.ss58_address})
            assert not restored.coprocessor.is_allowed(handle, other_keypair.ss58_address)
        finally:
            store.close()


class TestAtomicSave:

    def test_grants_written_with_user_state(self, paillier_keys, clock, ledger_config, user_keypair, submit):
        store = SqlLedgerStore(url="sqlite://")
        try:
            public_key, private_key = paillier_keys
            ledger = ScoreLedger(ledger_config, Coprocessor(public_key, private_key, clock=clock), store=store, clock=clock)
            submit(ledger, user_keypair, 70)
            handle = ledger.get_record(user_keypair.ss58_address, 0)[2]
            assert store.load_grants() == [(handle, user_keypair.ss58_address)]
        finally:
            store.close()

    def test_failed_grant_rolls_back_user_state(self, db_url, paillier_keys, clock, ledger_config, user_keypair, submit, monkeypatch):
        store, ledger = _open(db_url, paillier_keys, clock, ledger_config)
        user = user_keypair.ss58_address

        def _broken_row(**kwargs):
            raise RuntimeError("grant table unavailable")

        try:
            with monkeypatch.context() as m:
                m.setattr(sql_store, "AccessGrantRow", _broken_row)
                with pytest.raises(RuntimeError):
                    submit(ledger, user_keypair, 70)

            assert ledger.get_record_count(user) == 0
            assert store.load_users() == {}
            assert store.load_grants() == []

            # Nothing was half-written: the same user can submit right away
            assert submit(ledger, user_keypair, 80).record_count == 1
            assert store.load_users()[user].records[0][0] == clock()
        finally:
            store.close()
