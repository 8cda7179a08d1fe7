"""Command-line entry point: track scripts and log every sync batch."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from photonic_chain.client import ChainClient
from photonic_chain.config.settings import AppConfig

if TYPE_CHECKING:
    from collections.abc import Sequence

    from photonic_chain.sync.engine import SyncResult

logger = logging.getLogger("photonic_chain")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photonic-chain",
        description="Keep a local UTXO cache in sync with ElectrumX servers.",
    )
    parser.add_argument("--config", default="", help="YAML config file")
    parser.add_argument("--identity", required=True, help="Wallet address this session serves")
    parser.add_argument(
        "--script",
        action="append",
        default=[],
        required=True,
        help="Hex locking script to track (repeatable)",
    )
    parser.add_argument(
        "--server",
        action="append",
        default=[],
        help="ElectrumX wss:// endpoint; overrides the configured list (repeatable)",
    )
    return parser


async def _log_sync(result: SyncResult) -> None:
    logger.info(
        "%s: %d added, %d reconfirmed, %d spent, %d unspent",
        result.script_hash,
        len(result.added),
        len(result.reconfirmed),
        len(result.spent),
        result.total_unspent_count,
    )


async def run(config: AppConfig, identity: str, scripts: Sequence[str], servers: Sequence[str]) -> None:
    """Sync until cancelled."""
    client = ChainClient(config)
    await client.initialize()
    try:
        for script in scripts:
            client.track(script)
        client.subscribe(_log_sync)
        await client.connect(servers or config.electrum.servers, identity)
        await asyncio.Event().wait()
    finally:
        await client.close()


def main(argv: Sequence[str] | None = None) -> None:
    """Start the chain client."""
    args = build_parser().parse_args(argv)
    config = AppConfig(config_path=args.config) if args.config else AppConfig()
    logging.basicConfig(
        level=str(config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(config, args.identity, args.script, args.server))


if __name__ == "__main__":
    main()
