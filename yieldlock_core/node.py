"""
YieldLock ledger node: wires configuration, token ledgers, the node
identity, the authorizer and the stake ledger together, and optionally
serves the REST API.

Usage:
    node = LedgerNode(load_config("yieldlock.toml"))
    await node.start()
    ...
    await node.stop()
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from yieldlock_core.asset import TokenLedger
from yieldlock_core.config import YieldLockConfig
from yieldlock_core.identity import Authorizer, Identity
from yieldlock_core.ledger import StakeLedger
from yieldlock_core.precision import format_amount

logger = logging.getLogger("yieldlock_node")

ASSET_ROLES = ("staking", "reward")


class LedgerNode:
    """A stake ledger plus its collaborators, built from configuration."""

    def __init__(
        self,
        config: Optional[YieldLockConfig] = None,
        identity: Optional[Identity] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or YieldLockConfig()
        cfg = self.config
        self.identity = identity or Identity.from_key_file(cfg.ledger.identity_file)

        staking = TokenLedger(cfg.assets.staking_symbol)
        if cfg.assets.reward_symbol == cfg.assets.staking_symbol:
            reward = staking
        else:
            reward = TokenLedger(cfg.assets.reward_symbol)
        self.assets: dict[str, TokenLedger] = {"staking": staking, "reward": reward}

        self.authorizer = Authorizer(cfg.ledger.admin or self.identity.address)
        self.ledger = StakeLedger(
            staking,
            reward,
            cfg.ledger.reward_rate_per_second,
            initializer=self.identity.address,
            authorizer=self.authorizer,
            custody_address=cfg.ledger.custody_address,
            clock=clock,
        )
        self._apply_genesis()
        self.started_at = time.time()
        self._api = None

    def _apply_genesis(self) -> None:
        for role, table in (("staking", self.config.genesis.staking),
                            ("reward", self.config.genesis.reward)):
            for address, amount in table.items():
                self.assets[role].mint(address, int(amount))
                symbol = self.assets[role].symbol
                logger.info(f"Genesis: minted {format_amount(int(amount), symbol)} to {address}")

    # ── token helpers ───────────────────────────────────────────────

    def approve(self, caller: str, role: str, amount: int) -> bool:
        """Let the ledger's custody account pull *amount* of *role* asset from *caller*."""
        if role not in ASSET_ROLES:
            raise ValueError(f"Unknown asset role: {role!r}")
        return self.assets[role].approve(caller, self.ledger.custody, amount)

    def balances(self, address: str) -> dict:
        result = {}
        for role in ASSET_ROLES:
            asset = self.assets[role]
            result[role] = {
                "symbol": asset.symbol,
                "balance": asset.balance_of(address),
                "allowance": asset.allowance(address, self.ledger.custody),
            }
        return result

    def status(self) -> dict:
        return {
            "identity": self.identity.address,
            "privileged": self.authorizer.privileged,
            "uptime": time.time() - self.started_at,
            "assets": {role: self.assets[role].to_dict() for role in ASSET_ROLES},
            "api_enabled": self._api is not None,
        }

    # ── lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        logger.info(
            f"Ledger node {self.identity.address} started "
            f"(rate={self.ledger.reserve.reward_rate_per_second}, "
            f"privileged={self.authorizer.privileged})"
        )
        if self.config.api.enabled:
            from yieldlock_core.api import APIServer
            self._api = APIServer(
                self,
                host=self.config.api.host,
                port=self.config.api.port,
                api_config=self.config.api,
            )
            await self._api.start()

    async def stop(self) -> None:
        if self._api is not None:
            await self._api.stop()
            self._api = None
        logger.info("Ledger node stopped")
