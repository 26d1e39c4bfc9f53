"""Score ledger service entrypoint.

Owns the coprocessor key, the SQL store and the HTTP API. The wallet
hotkey is the deployer: it becomes the ledger address and admin unless
overridden on first start.
"""

import asyncio
import os
import signal

import bittensor as bt
from dotenv import load_dotenv

from roadtrack.base.config import build_ledger_config, check_config, config as build_config


async def _serve(server, stop_event: asyncio.Event) -> None:
    await server.start()
    try:
        await stop_event.wait()
    finally:
        await server.stop()


def main() -> None:
    # Load .env if not in test mode
    if os.environ.get("ROADTRACK_TEST_MODE") != "true":
        load_dotenv()

    config = build_config()
    check_config(config)
    bt.logging.set_config(config=config.logging)
    bt.logging.info({"ledger": "starting"})

    wallet = bt.Wallet(config=config)
    deployer = wallet.hotkey.ss58_address

    from roadtrack.ledger.auth import AccessPolicy
    from roadtrack.ledger.confidential import Coprocessor
    from roadtrack.ledger.ledger import ScoreLedger
    from roadtrack.ledger.api.http_server import LedgerHTTPServer
    from roadtrack.ledger.store.sql import SqlLedgerStore

    store = SqlLedgerStore(url=config.ledger.db_url)
    coprocessor = Coprocessor.from_keyfile(
        config.coprocessor.keyfile,
        key_length=config.coprocessor.key_length,
        store=store,
    )
    ledger = ScoreLedger.restore(build_ledger_config(config, deployer), coprocessor, store)

    bt.logging.info({
        "ledger_config": {
            "address": ledger.config.address,
            "admin": ledger.admin,
            "test_mode": ledger.is_test_mode(),
            "db_url": config.ledger.db_url,
            "host": config.http.host,
            "port": config.http.port,
        }
    })

    policy = AccessPolicy(
        token_ttl=config.auth.token_ttl,
        rate_limit_per_hour=config.auth.rate_limit_per_hour,
    )
    server = LedgerHTTPServer(ledger, policy, host=config.http.host, port=config.http.port)

    loop = asyncio.new_event_loop()
    stop_event = asyncio.Event()

    def _signal_handler(sig, frame):
        bt.logging.info({"ledger": "shutdown_signal_received"})
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run_until_complete(_serve(server, stop_event))
    except KeyboardInterrupt:
        bt.logging.info({"ledger": "keyboard_interrupt"})
    finally:
        store.close()
        loop.close()
        bt.logging.info({"ledger": "stopped"})


if __name__ == "__main__":
    main()
