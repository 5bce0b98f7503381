"""
Wires a ``StakingLedger`` to its collaborators from configuration.

``StakePoolService`` plays the role of a node: it owns the ledger, the
optional SQLite store and the rate source, and is what the HTTP API
talks to.  Token contracts themselves are external; the caller passes
them in.  ``start`` / ``stop`` bring the API up and down as configured.
"""

from __future__ import annotations

import logging
from typing import Optional

from stakepool_core.address import address_from_label, to_checksum_address
from stakepool_core.assets import Token, TokenAsset
from stakepool_core.config import StakePoolConfig
from stakepool_core.errors import InvalidConfig
from stakepool_core.oracle import OracleManager
from stakepool_core.rate_source import FixedRateSource, OracleRateSource, RateSource
from stakepool_core.staking import StakingLedger
from stakepool_core.storage import LedgerStore

logger = logging.getLogger("stakepool.service")

DEFAULT_HOLDER_LABEL = "stakepool-holder"


def build_rate_source(cfg: StakePoolConfig,
                      oracles: Optional[OracleManager]) -> Optional[RateSource]:
    """Fixed rate when configured, otherwise the oracle median, else None."""
    if cfg.oracle.fixed_rate:
        return FixedRateSource(cfg.oracle.fixed_rate)
    if oracles is not None:
        return OracleRateSource(
            oracles, cfg.oracle.base_asset, cfg.oracle.quote_asset,
            max_age=cfg.oracle.max_age,
        )
    return None


def _expect_address(configured: str, token: Token, what: str) -> None:
    if configured and to_checksum_address(configured) != token.address:
        raise InvalidConfig(
            f"{what} token {token.address} does not match configured {configured}"
        )


class StakePoolService:
    """Ledger + persistence + rate source, built from one config."""

    def __init__(
        self,
        ledger: StakingLedger,
        store: Optional[LedgerStore] = None,
        oracles: Optional[OracleManager] = None,
        config: Optional[StakePoolConfig] = None,
    ):
        self.ledger = ledger
        self.store = store
        self.oracles = oracles
        self.config = config or StakePoolConfig()
        self.api = None

    @classmethod
    def from_config(
        cls,
        cfg: StakePoolConfig,
        staked_token: Token,
        reward_token: Token,
        oracles: Optional[OracleManager] = None,
        clock=None,
    ) -> StakePoolService:
        _expect_address(cfg.pool.staked_asset, staked_token, "Staked")
        _expect_address(cfg.pool.reward_asset, reward_token, "Reward")

        holder = cfg.pool.holder or address_from_label(DEFAULT_HOLDER_LABEL)
        staked = TokenAsset(staked_token, holder)
        reward = TokenAsset(reward_token, holder, funder=cfg.pool.reward_funder or None)

        ledger = StakingLedger(
            staked,
            reward,
            cfg.pool.apr,
            build_rate_source(cfg, oracles),
            min_stake=cfg.pool.min_stake,
            clock=clock,
            verify_invariants=cfg.pool.verify_invariants,
        )

        store = None
        if cfg.storage.enabled:
            if cfg.storage.backend != "sqlite":
                raise InvalidConfig(f"Unsupported storage backend: {cfg.storage.backend}")
            store = LedgerStore(cfg.storage.path)
            store.restore_ledger(ledger)

        return cls(ledger, store=store, oracles=oracles, config=cfg)

    @property
    def holder(self) -> str | None:
        return getattr(self.ledger.staked_asset, "holder", None)

    def persist(self) -> None:
        """Write the ledger to the store, if one is configured."""
        if self.store is not None:
            self.store.snapshot_ledger(self.ledger)

    def status(self) -> dict:
        summary = self.ledger.pool_summary()
        summary["holder"] = self.holder
        summary["storage"] = self.store is not None
        summary["rate_source"] = type(self.ledger.rate_source).__name__ if self.ledger.rate_source else None
        return summary

    async def start(self) -> None:
        """Serve the REST API when ``[api] enabled`` is set."""
        if self.config.api.enabled:
            from stakepool_core.api import APIServer
            self.api = APIServer(
                self,
                host=self.config.api.host,
                port=self.config.api.port,
                api_config=self.config.api,
            )
            await self.api.start()
        logger.info("StakePool service started | api=%s", self.api is not None)

    async def stop(self) -> None:
        if self.api is not None:
            await self.api.stop()
            self.api = None
        self.close()

    def close(self) -> None:
        if self.store is not None:
            self.persist()
            self.store.close()
            self.store = None
