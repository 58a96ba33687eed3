"""
Tests for yieldlock_core.config — TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing, section merging and large-integer strings
  - Environment variable overrides (precedence over TOML)
  - _merge / parse_int helper edge cases
"""

from __future__ import annotations

import os
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from yieldlock_core.config import (
    APIConfig,
    AssetsConfig,
    GenesisConfig,
    LedgerConfig,
    LoggingConfig,
    YieldLockConfig,
    _merge,
    load_config,
    parse_int,
)


def _write_toml(content: str) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(textwrap.dedent(content))
    return f.name


# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_ledger_defaults(self):
        c = LedgerConfig()
        self.assertEqual(c.reward_rate_per_second, 0)
        self.assertEqual(c.admin, "")
        self.assertEqual(c.custody_address, "yLedgerCustody")

    def test_assets_share_one_symbol(self):
        a = AssetsConfig()
        self.assertEqual(a.staking_symbol, a.reward_symbol)

    def test_api_defaults(self):
        a = APIConfig()
        self.assertFalse(a.enabled)
        self.assertEqual(a.port, 8080)
        self.assertEqual(a.rate_limit_rpm, 120)
        self.assertTrue(a.require_signatures)

    def test_genesis_defaults(self):
        g = GenesisConfig()
        self.assertEqual(g.staking, {})
        self.assertEqual(g.reward, {})

    def test_logging_defaults(self):
        log_cfg = LoggingConfig()
        self.assertEqual(log_cfg.level, "INFO")
        self.assertEqual(log_cfg.format, "human")
        self.assertIsNone(log_cfg.file)

    def test_top_level_defaults(self):
        cfg = YieldLockConfig()
        self.assertIsInstance(cfg.ledger, LedgerConfig)
        self.assertIsInstance(cfg.api, APIConfig)


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════

class TestMerge(unittest.TestCase):

    def test_merge_updates_fields(self):
        c = LedgerConfig()
        _merge(c, {"admin": "yBoss", "reward_rate_per_second": 7})
        self.assertEqual(c.admin, "yBoss")
        self.assertEqual(c.reward_rate_per_second, 7)

    def test_merge_ignores_unknown_keys(self):
        c = LedgerConfig()
        _merge(c, {"unknown_field": 42})
        self.assertFalse(hasattr(c, "unknown_field"))

    def test_merge_hyphenated_keys(self):
        c = LedgerConfig()
        _merge(c, {"custody-address": "yVault"})
        self.assertEqual(c.custody_address, "yVault")


class TestParseInt(unittest.TestCase):

    def test_plain(self):
        self.assertEqual(parse_int("42"), 42)

    def test_underscores(self):
        self.assertEqual(parse_int("1_000_000"), 1_000_000)

    def test_exponent_is_exact(self):
        self.assertEqual(parse_int("1e18"), 10**18)
        self.assertEqual(parse_int("5E3"), 5_000)

    def test_garbage_raises(self):
        with self.assertRaises(ValueError):
            parse_int("lots")


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

class TestLoadConfig(unittest.TestCase):

    def test_load_no_file(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.port, 8080)

    def test_load_missing_file(self):
        cfg = load_config("/tmp/__nonexistent_yieldlock__.toml")
        self.assertEqual(cfg.ledger.custody_address, "yLedgerCustody")

    def test_load_toml_file(self):
        path = _write_toml("""\
            [ledger]
            reward_rate_per_second = "1e12"
            admin = "yBoss"

            [assets]
            staking_symbol = "STK"
            reward_symbol = "RWD"

            [genesis]
            staking = { yAlice = "1_000e18", yBob = 500 }
            reward = { yBoss = 9000 }

            [api]
            enabled = true
            port = 3000
            api_key = "secret123"
            require_signatures = false

            [logging]
            level = "DEBUG"
            format = "json"
        """)
        try:
            cfg = load_config(path)
        finally:
            os.unlink(path)

        self.assertEqual(cfg.ledger.reward_rate_per_second, 10**12)
        self.assertEqual(cfg.ledger.admin, "yBoss")
        self.assertEqual(cfg.assets.staking_symbol, "STK")
        self.assertEqual(cfg.assets.reward_symbol, "RWD")
        self.assertEqual(cfg.genesis.staking["yAlice"], 1_000 * 10**18)
        self.assertEqual(cfg.genesis.staking["yBob"], 500)
        self.assertEqual(cfg.genesis.reward["yBoss"], 9000)
        self.assertTrue(cfg.api.enabled)
        self.assertEqual(cfg.api.port, 3000)
        self.assertEqual(cfg.api.api_key, "secret123")
        self.assertFalse(cfg.api.require_signatures)
        self.assertEqual(cfg.logging.level, "DEBUG")
        self.assertEqual(cfg.logging.format, "json")


# ═══════════════════════════════════════════════════════════════════
#  Environment variable overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):

    @patch.dict(os.environ, {"YIELDLOCK_REWARD_RATE": "2e15"}, clear=False)
    def test_env_reward_rate(self):
        cfg = load_config(None)
        self.assertEqual(cfg.ledger.reward_rate_per_second, 2 * 10**15)

    @patch.dict(os.environ, {"YIELDLOCK_ADMIN": "yEnvAdmin"}, clear=False)
    def test_env_admin(self):
        cfg = load_config(None)
        self.assertEqual(cfg.ledger.admin, "yEnvAdmin")

    @patch.dict(os.environ, {"YIELDLOCK_API_PORT": "9090"}, clear=False)
    def test_env_api_port_enables_api(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.port, 9090)
        self.assertTrue(cfg.api.enabled)

    @patch.dict(os.environ, {"YIELDLOCK_API_KEY": "k"}, clear=False)
    def test_env_api_key(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.api_key, "k")

    @patch.dict(os.environ, {"YIELDLOCK_CORS_ORIGINS": "http://a.test, ,http://b.test"},
                clear=False)
    def test_env_cors_origins(self):
        cfg = load_config(None)
        self.assertEqual(cfg.api.cors_origins, ["http://a.test", "http://b.test"])

    @patch.dict(os.environ, {"YIELDLOCK_LOG_LEVEL": "debug", "YIELDLOCK_LOG_FMT": "json"},
                clear=False)
    def test_env_logging(self):
        cfg = load_config(None)
        self.assertEqual(cfg.logging.level, "DEBUG")
        self.assertEqual(cfg.logging.format, "json")

    @patch.dict(os.environ, {"YIELDLOCK_ADMIN": "yFromEnv"}, clear=False)
    def test_env_beats_toml(self):
        path = _write_toml("""\
            [ledger]
            admin = "yFromFile"
        """)
        try:
            cfg = load_config(path)
        finally:
            os.unlink(path)
        self.assertEqual(cfg.ledger.admin, "yFromEnv")


if __name__ == "__main__":
    unittest.main()
