"""
Shared pytest fixtures for the StakePool test suite.
"""

import pytest

from stakepool_core.address import address_from_label
from stakepool_core.assets import Token, TokenAsset
from stakepool_core.rate_source import FixedRateSource
from stakepool_core.staking import StakingLedger
from tests.helpers import (
    ALICE,
    BOB,
    DEPLOYER,
    POOL,
    REWARD_SUPPLY,
    USER_FUNDS,
    FakeClock,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def staked_token():
    """WETH-like token; Alice and Bob are funded and have approved the pool."""
    token = Token("WETH", address_from_label("weth"))
    for user in (ALICE, BOB):
        token.mint(user, USER_FUNDS)
        token.approve(user, POOL, USER_FUNDS)
    return token


@pytest.fixture
def reward_token():
    """USDC-like token; the deployer approved the pool to spend its supply."""
    token = Token("USDC", address_from_label("usdc"))
    token.mint(DEPLOYER, REWARD_SUPPLY)
    token.approve(DEPLOYER, POOL, REWARD_SUPPLY)
    return token


@pytest.fixture
def rate():
    return FixedRateSource(2)


@pytest.fixture
def staked_asset(staked_token):
    return TokenAsset(staked_token, POOL)


@pytest.fixture
def reward_asset(reward_token):
    return TokenAsset(reward_token, POOL, funder=DEPLOYER)


@pytest.fixture
def ledger(staked_asset, reward_asset, rate, clock):
    """10 % APR ledger with invariant checking on."""
    return StakingLedger(
        staked_asset, reward_asset, 10, rate,
        clock=clock, verify_invariants=True,
    )
