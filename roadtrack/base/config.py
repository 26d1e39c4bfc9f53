# The MIT License (MIT)
# Copyright © 2023 Yuma Rao
# Copyright © 2023 Opentensor Foundation

# Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated
# documentation files (the “Software”), to deal in the Software without restriction, including without limitation
# the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

# The above copyright notice and this permission notice shall be included in all copies or substantial portions of
# the Software.

# THE SOFTWARE IS PROVIDED “AS IS”, WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO
# THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL
# THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
# DEALINGS IN THE SOFTWARE.

import os
import argparse
import bittensor as bt

from roadtrack.ledger.state import LedgerConfig


# Environment variables have the highest priority (override CLI defaults)
ENV_OVERRIDES = {
    "ROADTRACK_LEDGER__ADDRESS": ("ledger", "address", str),
    "ROADTRACK_LEDGER__ADMIN_HOTKEY": ("ledger", "admin_hotkey", str),
    "ROADTRACK_LEDGER__DB_URL": ("ledger", "db_url", str),
    "ROADTRACK_LEDGER__DATA_DIR": ("ledger", "data_dir", str),
    "ROADTRACK_COPROCESSOR__KEYFILE": ("coprocessor", "keyfile", str),
    "ROADTRACK_COPROCESSOR__KEY_LENGTH": ("coprocessor", "key_length", int),
    "ROADTRACK_HTTP__HOST": ("http", "host", str),
    "ROADTRACK_HTTP__PORT": ("http", "port", int),
    "ROADTRACK_AUTH__TOKEN_TTL": ("auth", "token_ttl", int),
    "ROADTRACK_AUTH__RATE_LIMIT_PER_HOUR": ("auth", "rate_limit_per_hour", int),
}


def add_args(parser: argparse.ArgumentParser) -> None:
    """
    Adds ledger service arguments to the parser.
    """

    parser.add_argument(
        "--ledger.address",
        type=str,
        help="Address encrypted inputs are bound to. Defaults to the wallet hotkey.",
        default="",
    )

    parser.add_argument(
        "--ledger.admin_hotkey",
        type=str,
        help="SS58 address of the admin principal. Defaults to the wallet hotkey (deployer).",
        default="",
    )

    parser.add_argument(
        "--ledger.data_dir",
        type=str,
        help="Directory for the ledger database and coprocessor key.",
        default="~/.roadtrack",
    )

    parser.add_argument(
        "--ledger.db_url",
        type=str,
        help="SQLAlchemy URL. Defaults to a SQLite file in ledger.data_dir.",
        default="",
    )

    parser.add_argument(
        "--coprocessor.keyfile",
        type=str,
        help="Paillier key file. Created on first start if missing.",
        default="",
    )

    parser.add_argument(
        "--coprocessor.key_length",
        type=int,
        help="Paillier modulus length in bits.",
        default=2048,
    )

    parser.add_argument(
        "--http.host",
        type=str,
        help="API bind address.",
        default="0.0.0.0",
    )

    parser.add_argument(
        "--http.port",
        type=int,
        help="API port.",
        default=8300,
    )

    parser.add_argument(
        "--auth.token_ttl",
        type=int,
        help="Bearer token lifetime in seconds.",
        default=3600,
    )

    parser.add_argument(
        "--auth.rate_limit_per_hour",
        type=int,
        help="Authenticated requests allowed per principal per hour.",
        default=600,
    )


def apply_env_overrides(config: "bt.Config") -> None:
    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw:
            setattr(getattr(config, section), key, cast(raw))


def check_config(config: "bt.Config") -> None:
    r"""Checks/validates the config namespace object and resolves paths."""
    apply_env_overrides(config)

    data_dir = os.path.expanduser(config.ledger.data_dir)
    os.makedirs(data_dir, exist_ok=True)
    config.ledger.data_dir = data_dir

    if not config.ledger.db_url:
        config.ledger.db_url = "sqlite:///{}".format(os.path.join(data_dir, "ledger.db"))
    if not config.coprocessor.keyfile:
        config.coprocessor.keyfile = os.path.join(data_dir, "coprocessor_key.json")
    bt.logging.info("ledger data dir:", data_dir)


def build_ledger_config(config: "bt.Config", default_principal: str) -> LedgerConfig:
    """LedgerConfig from the parsed config; address/admin fall back to the deployer."""
    return LedgerConfig(
        address=config.ledger.address or default_principal,
        admin=config.ledger.admin_hotkey or default_principal,
    )


def config() -> "bt.Config":
    """
    Returns the configuration object for the ledger service.
    """
    parser = argparse.ArgumentParser(description="Road safety confidential score ledger")
    bt.Wallet.add_args(parser)
    bt.logging.add_args(parser)
    add_args(parser)
    return bt.Config(parser)
