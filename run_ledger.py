#!/usr/bin/env python3
"""
YieldLock Ledger Runner — starts a stake ledger node with:
  - In-memory staking / reward token ledgers (genesis balances from config)
  - The stake ledger and its privileged reserve operator
  - The REST API (when enabled)

Usage:
    python run_ledger.py --config yieldlock.toml --api-port 8080 \\
                         --reward-rate 1000000000000

Environment variables (alternative to flags):
    YIELDLOCK_REWARD_RATE, YIELDLOCK_ADMIN, YIELDLOCK_API_HOST, YIELDLOCK_API_PORT,
    YIELDLOCK_API_KEY, YIELDLOCK_LOG_LEVEL, YIELDLOCK_LOG_FMT
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging

from yieldlock_core.config import load_config, parse_int
from yieldlock_core.identity import Identity
from yieldlock_core.logging_config import log_ledger_events, setup_logging_from_config
from yieldlock_core.node import LedgerNode

logger = logging.getLogger("yieldlock_node")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="YieldLock stake ledger node")
    p.add_argument("--config", default=None, help="Path to yieldlock.toml config file")
    p.add_argument("--reward-rate", default=None,
                   help="Reward rate per second, scaled by 1e18 (e.g. 1e12)")
    p.add_argument("--admin", default=None, help="Privileged identity address")
    p.add_argument("--api-host", default=None, help="API listen host")
    p.add_argument("--api-port", type=int, default=None, help="API listen port (enables the API)")
    p.add_argument("--seed", default=None,
                   help="Derive the node identity from this seed instead of the key file")
    p.add_argument("--insecure-unsigned", action="store_true",
                   help="Accept unsigned POST bodies (development only)")
    return p.parse_args(argv)


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    # Load config (TOML + env overrides); CLI flags override config
    cfg = load_config(args.config)
    if args.reward_rate is not None:
        cfg.ledger.reward_rate_per_second = parse_int(args.reward_rate)
    if args.admin:
        cfg.ledger.admin = args.admin
    if args.api_host:
        cfg.api.host = args.api_host
    if args.api_port is not None:
        cfg.api.port = args.api_port
        cfg.api.enabled = True
    if args.insecure_unsigned:
        cfg.api.require_signatures = False

    setup_logging_from_config(cfg.logging)

    identity = Identity.from_seed(args.seed) if args.seed else None
    node = LedgerNode(cfg, identity=identity)
    log_ledger_events(node.ledger)

    if not cfg.api.require_signatures:
        logger.warning(
            "Unsigned POST bodies accepted: any client can act as any caller. "
            "Do not expose this node."
        )
    if cfg.ledger.reward_rate_per_second == 0:
        logger.warning("reward_rate_per_second is 0: stakes earn no reward")

    await node.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await node.stop()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
