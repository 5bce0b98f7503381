"""
TOML-based configuration for StakePool.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from stakepool_core.config import load_config
    cfg = load_config("stakepool.toml")
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
class PoolConfig:
    """Ledger parameters, fixed for the life of a pool."""
    apr: int = 10
    min_stake: int = 5 * 10 ** 18
    staked_asset: str = ""            # token address
    reward_asset: str = ""            # token address
    # Account whose allowance pays rewards (empty = the pool's own balance)
    reward_funder: str = ""
    holder: str = ""                  # identity holding the pool's funds
    verify_invariants: bool = False


@dataclass
class OracleConfig:
    """Rate source used at claim time."""
    base_asset: str = "ETH"
    quote_asset: str = "USDC"
    max_age: float = 3600.0
    # When set, claims use this constant rate instead of the oracle.
    fixed_rate: str = ""


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536


@dataclass
class StorageConfig:
    """Persistence settings."""
    enabled: bool = False
    backend: str = "sqlite"
    path: str = "data/stakepool.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class StakePoolConfig:
    """Top-level configuration container."""
    pool: PoolConfig = field(default_factory=PoolConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> StakePoolConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        STAKEPOOL_APR           -> pool.apr
        STAKEPOOL_STAKED_ASSET  -> pool.staked_asset
        STAKEPOOL_REWARD_ASSET  -> pool.reward_asset
        STAKEPOOL_REWARD_FUNDER -> pool.reward_funder
        STAKEPOOL_FIXED_RATE    -> oracle.fixed_rate
        STAKEPOOL_API_PORT      -> api.port  (also enables the API)
        STAKEPOOL_API_KEY       -> api.api_key
        STAKEPOOL_CORS_ORIGINS  -> api.cors_origins (comma-separated)
        STAKEPOOL_DB_PATH       -> storage.path (also enables storage)
        STAKEPOOL_LOG_LEVEL     -> logging.level
        STAKEPOOL_LOG_FMT       -> logging.format
    """
    cfg = StakePoolConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("pool", cfg.pool),
                ("oracle", cfg.oracle),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("STAKEPOOL_APR"):
        cfg.pool.apr = int(v)
    if v := os.environ.get("STAKEPOOL_STAKED_ASSET"):
        cfg.pool.staked_asset = v
    if v := os.environ.get("STAKEPOOL_REWARD_ASSET"):
        cfg.pool.reward_asset = v
    if v := os.environ.get("STAKEPOOL_REWARD_FUNDER"):
        cfg.pool.reward_funder = v
    if v := os.environ.get("STAKEPOOL_FIXED_RATE"):
        cfg.oracle.fixed_rate = v
    if v := os.environ.get("STAKEPOOL_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("STAKEPOOL_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("STAKEPOOL_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("STAKEPOOL_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True
    if v := os.environ.get("STAKEPOOL_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("STAKEPOOL_LOG_FMT"):
        cfg.logging.format = v

    return cfg
