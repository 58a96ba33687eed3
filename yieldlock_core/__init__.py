"""
YieldLock - a yield-upfront staking ledger.

Key features:
- Upfront rewards from a fixed per-second rate (18-decimal fixed point)
- Reward reserve funded by liquidity providers, replenished by penalties
- 30 % early-close penalty, full principal at or after maturity
- All-or-nothing operations with snapshot rollback and invariant checks
- secp256k1-signed caller identities and a privileged reserve operator
- aiohttp REST API, TOML configuration, structured logging
"""

__version__ = "1.0.0"
__all__ = [
    "api",
    "asset",
    "config",
    "errors",
    "events",
    "identity",
    "invariants",
    "ledger",
    "logging_config",
    "node",
    "precision",
]
