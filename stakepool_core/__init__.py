"""
StakePool - collateral staking ledger with fixed-APR reward accrual.

Key features:
- Lazy, checkpointed reward accrual with exact integer arithmetic
- Stake / withdraw / claim with all-or-nothing asset transfers
- Rewards converted at claim time through a pluggable rate source
- Price oracle with median / trimmed-mean aggregation
- SQLite persistence, TOML configuration, structured logging
- aiohttp REST API
"""

__version__ = "1.0.0"
__all__ = [
    "accrual",
    "address",
    "assets",
    "errors",
    "events",
    "invariants",
    "oracle",
    "precision",
    "rate_source",
    "staking",
    "storage",
    "config",
    "logging_config",
    "service",
    "api",
]
