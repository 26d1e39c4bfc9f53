"""Admin CLI for a running score ledger.

  roadtrack-admin test-mode on|off
  roadtrack-admin reset-submit-time <user>
  roadtrack-admin info

Signs in with the wallet hotkey, which must be the ledger admin for the
mutating commands.
"""

import argparse
import asyncio
import os
import sys

import bittensor as bt
from dotenv import load_dotenv

from roadtrack.ledger.errors import LedgerError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Road safety score ledger admin")
    bt.Wallet.add_args(parser)
    bt.logging.add_args(parser)
    parser.add_argument("--ledger.url", type=str, default="http://127.0.0.1:8300")

    sub = parser.add_subparsers(dest="command", required=True)
    test_mode = sub.add_parser("test-mode", help="Enable or disable test mode")
    test_mode.add_argument("state", choices=["on", "off"])
    reset = sub.add_parser("reset-submit-time", help="Clear a user's cadence gate (test mode only)")
    reset.add_argument("user", type=str)
    sub.add_parser("info", help="Show ledger address, admin and test mode")
    return parser


async def run(args: argparse.Namespace, keypair) -> int:
    from roadtrack.ledger.api.http_client import LedgerClient

    url = os.environ.get("ROADTRACK_LEDGER__URL", getattr(args, "ledger.url"))
    async with LedgerClient(url, keypair, max_retries=1) as client:
        try:
            if args.command == "test-mode":
                enabled = await client.set_test_mode(args.state == "on")
                bt.logging.info({"ledger_admin": {"test_mode": enabled}})
            elif args.command == "reset-submit-time":
                await client.reset_submit_time(args.user)
                bt.logging.info({"ledger_admin": {"submit_time_reset": args.user}})
            else:
                info = await client.info()
                print(info.model_dump_json(indent=2, exclude={"public_key_n"}))
        except LedgerError as e:
            bt.logging.error({"ledger_admin": {"command": args.command, "error": e.code, "detail": e.message}})
            return 1
    return 0


def main() -> None:
    if os.environ.get("ROADTRACK_TEST_MODE") != "true":
        load_dotenv()

    args = build_parser().parse_args()

    wallet_name = os.environ.get("ROADTRACK_WALLET__NAME", getattr(args, "wallet.name", "default"))
    wallet_hotkey = os.environ.get("ROADTRACK_WALLET__HOTKEY", getattr(args, "wallet.hotkey", "default"))
    wallet = bt.Wallet(name=wallet_name, hotkey=wallet_hotkey)

    sys.exit(asyncio.run(run(args, wallet.hotkey)))


if __name__ == "__main__":
    main()
