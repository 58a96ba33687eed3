"""
TOML-based configuration for YieldLock ledger nodes.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from yieldlock_core.config import load_config
    cfg = load_config("yieldlock.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass
class LedgerConfig:
    """Stake ledger parameters, fixed for the ledger's lifetime."""
    # Reward units per staked unit per second, scaled by 10**18.
    reward_rate_per_second: int = 0
    # Privileged identity for reserve withdrawals (empty = node identity).
    admin: str = ""
    custody_address: str = "yLedgerCustody"
    # Node identity key; generated on first run when missing.
    identity_file: str = "data/identity.key"


@dataclass
class AssetsConfig:
    """Token symbols.  Identical symbols share a single token ledger."""
    staking_symbol: str = "YLD"
    reward_symbol: str = "YLD"


@dataclass
class GenesisConfig:
    """
    Initial token balances.

    ``staking`` and ``reward`` map address → base units minted at start-up.
    """
    staking: dict[str, int] = field(default_factory=dict)
    reward: dict[str, int] = field(default_factory=dict)


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                  # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)
    max_body_bytes: int = 65_536
    require_signatures: bool = True    # POST bodies must be signed by the caller


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class YieldLockConfig:
    """Top-level configuration container."""
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    assets: AssetsConfig = field(default_factory=AssetsConfig)
    genesis: GenesisConfig = field(default_factory=GenesisConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def parse_int(value: str) -> int:
    """Accept plain or underscore-grouped integers, and ``1e18``-style powers."""
    text = value.strip().replace("_", "")
    if "e" in text.lower():
        mantissa, exponent = text.lower().split("e", 1)
        return int(mantissa) * 10 ** int(exponent)
    return int(text)


def load_config(path: str | None = None) -> YieldLockConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        YIELDLOCK_REWARD_RATE   -> ledger.reward_rate_per_second
        YIELDLOCK_ADMIN         -> ledger.admin
        YIELDLOCK_API_HOST      -> api.host
        YIELDLOCK_API_PORT      -> api.port   (also enables the API)
        YIELDLOCK_API_KEY       -> api.api_key
        YIELDLOCK_CORS_ORIGINS  -> api.cors_origins (comma-separated)
        YIELDLOCK_LOG_LEVEL     -> logging.level
        YIELDLOCK_LOG_FMT       -> logging.format
    """
    cfg = YieldLockConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("ledger", cfg.ledger),
                ("assets", cfg.assets),
                ("genesis", cfg.genesis),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            # Large amounts may be written as strings ("1e18", "1_000")
            rate = cfg.ledger.reward_rate_per_second
            if isinstance(rate, str):
                cfg.ledger.reward_rate_per_second = parse_int(rate)
            for table in (cfg.genesis.staking, cfg.genesis.reward):
                for address, amount in table.items():
                    if isinstance(amount, str):
                        table[address] = parse_int(amount)

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("YIELDLOCK_REWARD_RATE"):
        cfg.ledger.reward_rate_per_second = parse_int(v)
    if v := os.environ.get("YIELDLOCK_ADMIN"):
        cfg.ledger.admin = v
    if v := os.environ.get("YIELDLOCK_API_HOST"):
        cfg.api.host = v
    if v := os.environ.get("YIELDLOCK_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("YIELDLOCK_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("YIELDLOCK_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("YIELDLOCK_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("YIELDLOCK_LOG_FMT"):
        cfg.logging.format = v

    return cfg
