"""
Tests for the staking ledger.

Covers:
  - Construction-time validation (asset identities, APR bounds)
  - Stake: balances, reserve, minimum floor, reward accrual, events
  - Implicit stakes from raw transfers
  - Withdraw: balances, returned funds, accrual on reduced principal
  - Claim: conversion at the live rate, zeroing, failure rollback
  - Atomicity of failed transfers and rate queries
  - Nested calls from collaborators; cross-thread serialisation
  - Reserve / balance invariant over a mixed sequence of operations
"""

import random
import threading
from decimal import Decimal

import pytest

from stakepool_core.address import ZERO_ADDRESS
from stakepool_core.assets import TokenAsset
from stakepool_core.errors import (
    InsufficientBalance,
    InvalidAmount,
    InvalidConfig,
    NoReward,
    RateUnavailable,
    ReentrantCall,
    StakePoolError,
    TransferFailed,
)
from stakepool_core.events import RewardClaimed, Staked, Withdrawn
from stakepool_core.precision import to_base_units
from stakepool_core.rate_source import FixedRateSource
from stakepool_core.staking import MIN_STAKE, StakingLedger
from tests.helpers import ALICE, BOB, DEPLOYER, ONE, ONE_YEAR, POOL, USER_FUNDS


class _Handle:
    """Bare asset handle with only an address."""

    def __init__(self, address):
        self.address = address

    def transfer_in(self, sender, amount):
        return True

    def transfer_out(self, recipient, amount):
        return True


class _FlakyAsset(TokenAsset):
    """TokenAsset whose pushes can be switched off."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_out = False

    def transfer_out(self, recipient, amount):
        if self.fail_out:
            return False
        return super().transfer_out(recipient, amount)


class _BrokenRate:
    def current_rate(self):
        raise ConnectionError("feed offline")


def _snapshot(ledger, user):
    return (ledger.account_of(user), ledger.total_reserve,
            ledger.total_reward_claimed, ledger.total_reward_paid)


# ═══════════════════════════════════════════════════════════════════
#  Deployment
# ═══════════════════════════════════════════════════════════════════

class TestDeployment:
    def test_sets_reward_token_address(self, ledger, reward_token):
        assert ledger.reward_token == reward_token.address

    def test_sets_staked_token_address(self, ledger, staked_token):
        assert ledger.staked_token == staked_token.address

    def test_sets_annual_percentage_rate(self, ledger):
        assert ledger.apr == 10

    def test_starts_empty(self, ledger):
        assert ledger.total_reserve == 0
        assert dict(ledger.accounts) == {}

    def test_reward_asset_missing(self, staked_asset):
        with pytest.raises(InvalidConfig, match="Reward token address can not be zero"):
            StakingLedger(staked_asset, None, 10)

    def test_reward_asset_zero_address(self, staked_asset):
        with pytest.raises(InvalidConfig, match="Reward token address can not be zero"):
            StakingLedger(staked_asset, _Handle(ZERO_ADDRESS), 123)

    def test_staked_asset_zero_address(self, reward_asset):
        with pytest.raises(InvalidConfig, match="Staked token"):
            StakingLedger(_Handle(ZERO_ADDRESS), reward_asset, 10)

    def test_staked_asset_missing(self, reward_asset):
        with pytest.raises(InvalidConfig):
            StakingLedger(None, reward_asset, 10)

    @pytest.mark.parametrize("apr", [0, 101, -5])
    def test_apr_out_of_range(self, staked_asset, reward_asset, apr):
        with pytest.raises(InvalidConfig, match="APR must be between 1 and 100"):
            StakingLedger(staked_asset, reward_asset, apr)

    @pytest.mark.parametrize("apr", [1, 100])
    def test_apr_bounds_accepted(self, staked_asset, reward_asset, apr):
        assert StakingLedger(staked_asset, reward_asset, apr).apr == apr

    @pytest.mark.parametrize("apr", ["10", 10.0, True])
    def test_apr_must_be_int(self, staked_asset, reward_asset, apr):
        with pytest.raises(InvalidConfig):
            StakingLedger(staked_asset, reward_asset, apr)

    def test_invalid_config_is_value_error(self, staked_asset, reward_asset):
        with pytest.raises(ValueError):
            StakingLedger(staked_asset, reward_asset, 0)

    def test_min_stake_must_be_positive(self, staked_asset, reward_asset):
        with pytest.raises(InvalidConfig):
            StakingLedger(staked_asset, reward_asset, 10, min_stake=0)


# ═══════════════════════════════════════════════════════════════════
#  Staking
# ═══════════════════════════════════════════════════════════════════

class TestStaking:
    def test_updates_user_balances(self, ledger):
        ledger.stake(ALICE, 5 * ONE)
        ledger.stake(BOB, 10 * ONE)
        assert ledger.balance_of(ALICE) == 5 * ONE
        assert ledger.balance_of(BOB) == 10 * ONE

    def test_updates_total_balance(self, ledger, staked_token):
        ledger.stake(ALICE, 5 * ONE)
        ledger.stake(BOB, 10 * ONE)
        assert ledger.total_reserve == 15 * ONE
        assert staked_token.balance_of(POOL) == 15 * ONE
        assert staked_token.balance_of(ALICE) == USER_FUNDS - 5 * ONE

    def test_rewards_after_one_year(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        ledger.stake(BOB, 72 * ONE)
        clock.advance(ONE_YEAR)
        assert ledger.reward_of(ALICE) == 36 * ONE * 10 // 100
        assert ledger.reward_of(BOB) == 72 * ONE * 10 // 100
        assert ledger.reward_of(ALICE) == to_base_units("3.6")

    def test_rewards_when_stake_increases(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR // 2)
        assert ledger.balance_of(ALICE) == 72 * ONE
        assert ledger.reward_of(ALICE) == 72 * ONE * 10 // 100
        assert ledger.reward_of(ALICE) == to_base_units("7.2")

    def test_repeat_stake_keeps_settled_reward(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        account = ledger.stake(ALICE, 36 * ONE)
        assert account.settled_reward == to_base_units("3.6")
        assert account.checkpoint_time == clock.now

    def test_emits_staked_event(self, ledger):
        ledger.stake(ALICE, 36 * ONE)
        events = ledger.events.of_type(Staked)
        assert len(events) == 1
        assert events[0].user == ALICE
        assert events[0].amount == 36 * ONE
        assert not events[0].implicit

    def test_below_minimum_rejected(self, ledger, staked_token):
        with pytest.raises(InvalidAmount, match="Staking amount should be minimum"):
            ledger.stake(ALICE, to_base_units("4.9"))
        assert ledger.balance_of(ALICE) == 0
        assert ledger.total_reserve == 0
        assert staked_token.balance_of(ALICE) == USER_FUNDS
        assert ALICE not in ledger.accounts

    def test_exact_minimum_accepted(self, ledger):
        ledger.stake(ALICE, MIN_STAKE)
        assert ledger.balance_of(ALICE) == MIN_STAKE

    def test_floor_applies_to_each_call(self, ledger):
        ledger.stake(ALICE, 10 * ONE)
        with pytest.raises(InvalidAmount):
            ledger.stake(ALICE, ONE)
        assert ledger.balance_of(ALICE) == 10 * ONE

    @pytest.mark.parametrize("amount", [5.0 * ONE, "5000000000000000000", None, True])
    def test_non_integer_amount_rejected(self, ledger, amount):
        with pytest.raises(InvalidAmount):
            ledger.stake(ALICE, amount)

    def test_pull_without_allowance_fails(self, ledger, staked_token):
        staked_token.approve(ALICE, POOL, 0)
        with pytest.raises(TransferFailed):
            ledger.stake(ALICE, 10 * ONE)
        assert ALICE not in ledger.accounts
        assert ledger.total_reserve == 0
        assert ledger.events.history == []

    def test_failed_repeat_stake_leaves_account(self, ledger, staked_token, clock):
        ledger.stake(ALICE, 10 * ONE)
        before = _snapshot(ledger, ALICE)
        clock.advance(ONE_YEAR)
        staked_token.approve(ALICE, POOL, 0)
        with pytest.raises(TransferFailed):
            ledger.stake(ALICE, 10 * ONE)
        assert _snapshot(ledger, ALICE) == before
        assert ledger.reward_of(ALICE) == ONE

    def test_pull_raising_is_transfer_failed(self, reward_asset, clock):
        class _Raising(_Handle):
            def transfer_in(self, sender, amount):
                raise OSError("node unreachable")

        ledger = StakingLedger(_Raising("0x" + "11" * 20), reward_asset, 10, clock=clock)
        with pytest.raises(TransferFailed, match="node unreachable"):
            ledger.stake(ALICE, 10 * ONE)
        assert ledger.total_reserve == 0


# ═══════════════════════════════════════════════════════════════════
#  Implicit stakes (raw transfers)
# ═══════════════════════════════════════════════════════════════════

class TestImplicitStake:
    def test_raw_transfer_credits_sender(self, ledger, staked_token):
        assert staked_token.transfer(ALICE, POOL, 6 * ONE)
        assert ledger.balance_of(ALICE) == 6 * ONE
        assert ledger.total_reserve == 6 * ONE
        event = ledger.events.history[-1]
        assert isinstance(event, Staked)
        assert event.implicit

    def test_raw_transfer_settles_first(self, ledger, staked_token, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        staked_token.transfer(ALICE, POOL, 36 * ONE)
        clock.advance(ONE_YEAR // 2)
        assert ledger.reward_of(ALICE) == to_base_units("7.2")

    def test_raw_transfer_below_minimum_reverted(self, ledger, staked_token):
        with pytest.raises(InvalidAmount):
            staked_token.transfer(ALICE, POOL, ONE)
        assert staked_token.balance_of(ALICE) == USER_FUNDS
        assert staked_token.balance_of(POOL) == 0
        assert ledger.total_reserve == 0


# ═══════════════════════════════════════════════════════════════════
#  Withdrawal
# ═══════════════════════════════════════════════════════════════════

class TestWithdrawal:
    def test_updates_user_balances(self, ledger):
        ledger.stake(ALICE, 5 * ONE)
        ledger.stake(BOB, 10 * ONE)
        ledger.withdraw(ALICE, 5 * ONE // 2)
        ledger.withdraw(BOB, 10 * ONE // 2)
        assert ledger.balance_of(ALICE) == 5 * ONE // 2
        assert ledger.balance_of(BOB) == 5 * ONE

    def test_updates_total_balance(self, ledger, staked_token):
        ledger.stake(ALICE, 5 * ONE)
        ledger.stake(BOB, 10 * ONE)
        ledger.withdraw(ALICE, 5 * ONE // 2)
        ledger.withdraw(BOB, 10 * ONE // 2)
        assert ledger.total_reserve == 15 * ONE // 2
        assert staked_token.balance_of(POOL) == 15 * ONE // 2

    def test_rewards_after_partial_withdrawal(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        ledger.stake(BOB, 72 * ONE)
        clock.advance(ONE_YEAR)
        ledger.withdraw(ALICE, 18 * ONE)
        ledger.withdraw(BOB, 36 * ONE)
        clock.advance(2 * ONE_YEAR)
        # 36 for one year + 18 for two years
        assert ledger.reward_of(ALICE) == 36 * ONE * 10 // 100 + 18 * ONE * 10 // 100 * 2
        assert ledger.reward_of(ALICE) == 36 * ONE * 10 // 100 * 2
        assert ledger.reward_of(BOB) == 72 * ONE * 10 // 100 * 2

    def test_transfers_funds_back(self, ledger, staked_token):
        ledger.stake(ALICE, 50 * ONE)
        before = staked_token.balance_of(ALICE)
        ledger.withdraw(ALICE, 25 * ONE)
        assert staked_token.balance_of(ALICE) == before + 25 * ONE

    def test_emits_withdrawn_event(self, ledger):
        ledger.stake(ALICE, 10 * ONE)
        ledger.withdraw(ALICE, 4 * ONE)
        event = ledger.events.history[-1]
        assert isinstance(event, Withdrawn)
        assert (event.user, event.amount) == (ALICE, 4 * ONE)

    def test_full_withdrawal_keeps_reward(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        ledger.withdraw(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        assert ledger.balance_of(ALICE) == 0
        assert ledger.reward_of(ALICE) == to_base_units("3.6")
        assert ALICE not in ledger.depositors()

    def test_zero_amount_rejected(self, ledger):
        ledger.stake(ALICE, 10 * ONE)
        with pytest.raises(InvalidAmount, match="Withdraw amount can not be 0"):
            ledger.withdraw(ALICE, 0)
        assert ledger.balance_of(ALICE) == 10 * ONE

    def test_negative_amount_rejected(self, ledger):
        ledger.stake(ALICE, 10 * ONE)
        with pytest.raises(InvalidAmount):
            ledger.withdraw(ALICE, -1)

    def test_insufficient_balance(self, ledger, clock):
        ledger.stake(ALICE, 10 * ONE)
        clock.advance(1000)
        before = _snapshot(ledger, ALICE)
        with pytest.raises(InsufficientBalance, match="doesn't have enough balance"):
            ledger.withdraw(ALICE, 10 * ONE + 1)
        assert _snapshot(ledger, ALICE) == before

    def test_unknown_user_insufficient(self, ledger):
        with pytest.raises(InsufficientBalance):
            ledger.withdraw(BOB, ONE)
        assert BOB not in ledger.accounts

    def test_failed_push_rolls_back(self, staked_token, reward_asset, rate, clock):
        staked = _FlakyAsset(staked_token, POOL)
        ledger = StakingLedger(staked, reward_asset, 10, rate, clock=clock,
                               verify_invariants=True)
        ledger.stake(ALICE, 20 * ONE)
        clock.advance(ONE_YEAR)
        before = _snapshot(ledger, ALICE)
        staked.fail_out = True
        with pytest.raises(TransferFailed):
            ledger.withdraw(ALICE, 5 * ONE)
        assert _snapshot(ledger, ALICE) == before
        assert staked_token.balance_of(POOL) == 20 * ONE
        assert ledger.reward_of(ALICE) == 2 * ONE
        assert not ledger.events.of_type(Withdrawn)


# ═══════════════════════════════════════════════════════════════════
#  Claim
# ═══════════════════════════════════════════════════════════════════

class TestClaim:
    def test_no_reward_for_unknown_user(self, ledger):
        with pytest.raises(NoReward):
            ledger.claim(ALICE)

    def test_no_reward_right_after_stake(self, ledger):
        ledger.stake(ALICE, 10 * ONE)
        before = _snapshot(ledger, ALICE)
        with pytest.raises(NoReward):
            ledger.claim(ALICE)
        assert _snapshot(ledger, ALICE) == before

    def test_pays_reward_times_rate(self, ledger, reward_token, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        payout = ledger.claim(ALICE)
        assert payout == to_base_units("3.6") * 2
        assert reward_token.balance_of(ALICE) == payout
        assert reward_token.allowance(DEPLOYER, POOL) == 10 ** 30 - payout

    def test_claim_zeroes_reward(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        ledger.claim(ALICE)
        assert ledger.reward_of(ALICE) == 0
        assert ledger.account_of(ALICE).settled_reward == 0
        assert ledger.balance_of(ALICE) == 36 * ONE
        with pytest.raises(NoReward):
            ledger.claim(ALICE)

    def test_accrual_resumes_after_claim(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        ledger.claim(ALICE)
        clock.advance(ONE_YEAR)
        assert ledger.reward_of(ALICE) == to_base_units("3.6")

    def test_claim_includes_settled_and_pending(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        ledger.withdraw(ALICE, 18 * ONE)
        clock.advance(ONE_YEAR)
        expected = ledger.reward_of(ALICE)
        assert ledger.claim(ALICE) == expected * 2

    def test_exactly_one_event(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        payout = ledger.claim(ALICE)
        claims = ledger.events.of_type(RewardClaimed)
        assert len(claims) == 1
        assert claims[0].reward == to_base_units("3.6")
        assert claims[0].rate == Decimal(2)
        assert claims[0].payout == payout

    def test_fractional_rate(self, staked_asset, reward_asset, clock):
        ledger = StakingLedger(staked_asset, reward_asset, 10,
                               FixedRateSource("0.5"), clock=clock)
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        assert ledger.claim(ALICE) == to_base_units("1.8")

    def test_payout_rounding_to_zero_keeps_reward(self, staked_asset, reward_asset, clock):
        ledger = StakingLedger(staked_asset, reward_asset, 1,
                               FixedRateSource("0.000000000001"), clock=clock)
        ledger.stake(ALICE, MIN_STAKE)
        clock.advance(1)
        reward = ledger.reward_of(ALICE)
        assert reward > 0
        with pytest.raises(NoReward):
            ledger.claim(ALICE)
        assert ledger.reward_of(ALICE) == reward

    def test_insufficient_reward_allowance_rolls_back(self, ledger, reward_token, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        reward_token.approve(DEPLOYER, POOL, 1)
        before = _snapshot(ledger, ALICE)
        with pytest.raises(TransferFailed):
            ledger.claim(ALICE)
        assert _snapshot(ledger, ALICE) == before
        assert ledger.reward_of(ALICE) == to_base_units("3.6")
        assert reward_token.balance_of(ALICE) == 0
        assert not ledger.events.of_type(RewardClaimed)

    def test_without_rate_source(self, staked_asset, reward_asset, clock):
        ledger = StakingLedger(staked_asset, reward_asset, 10, clock=clock)
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        with pytest.raises(RateUnavailable):
            ledger.claim(ALICE)
        assert ledger.reward_of(ALICE) == to_base_units("3.6")

    def test_broken_rate_source(self, staked_asset, reward_asset, clock):
        ledger = StakingLedger(staked_asset, reward_asset, 10, _BrokenRate(), clock=clock)
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        before = _snapshot(ledger, ALICE)
        with pytest.raises(RateUnavailable, match="feed offline"):
            ledger.claim(ALICE)
        assert _snapshot(ledger, ALICE) == before

    def test_claim_from_pool_reserve(self, staked_asset, reward_token, rate, clock):
        reward = TokenAsset(reward_token, POOL)
        reward_token.transfer(DEPLOYER, POOL, 100 * ONE)
        ledger = StakingLedger(staked_asset, reward, 10, rate, clock=clock)
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        payout = ledger.claim(ALICE)
        assert reward_token.balance_of(POOL) == 100 * ONE - payout


# ═══════════════════════════════════════════════════════════════════
#  Re-entrancy and serialisation
# ═══════════════════════════════════════════════════════════════════

class TestReentrancy:
    def test_nested_withdraw_from_payout_hook(self, ledger, staked_token):
        ledger.stake(ALICE, 10 * ONE)

        def hook(sender, amount):
            ledger.withdraw(ALICE, 5 * ONE)
            raise RuntimeError("unreachable")

        staked_token.register_receive_hook(ALICE, hook)
        with pytest.raises(ReentrantCall):
            ledger.withdraw(ALICE, 5 * ONE)
        assert ledger.balance_of(ALICE) == 10 * ONE
        assert staked_token.balance_of(ALICE) == USER_FUNDS - 10 * ONE
        assert ledger.total_reserve == ledger.staked_asset.held() == 10 * ONE
        assert not ledger.events.of_type(Withdrawn)

    def test_hook_ignoring_rejection_lets_outer_finish(self, ledger, staked_token):
        ledger.stake(ALICE, 10 * ONE)
        rejected = []

        def hook(sender, amount):
            try:
                ledger.withdraw(ALICE, 5 * ONE)
            except ReentrantCall as exc:
                rejected.append(exc)

        staked_token.register_receive_hook(ALICE, hook)
        ledger.withdraw(ALICE, 5 * ONE)
        assert len(rejected) == 1
        assert ledger.balance_of(ALICE) == 5 * ONE
        assert ledger.total_reserve == ledger.staked_asset.held() == 5 * ONE

    def test_nested_stake_rejected(self, ledger, staked_token):
        ledger.stake(ALICE, 20 * ONE)
        staked_token.register_receive_hook(ALICE, lambda s, a: ledger.stake(ALICE, 5 * ONE))
        with pytest.raises(ReentrantCall):
            ledger.withdraw(ALICE, 10 * ONE)
        assert ledger.balance_of(ALICE) == 20 * ONE
        assert ledger.total_reserve == ledger.staked_asset.held()

    def test_listeners_may_call_ledger(self, ledger):
        def on_event(event):
            if isinstance(event, Withdrawn):
                ledger.stake(BOB, 5 * ONE)

        ledger.events.subscribe(on_event)
        ledger.stake(ALICE, 10 * ONE)
        ledger.withdraw(ALICE, 5 * ONE)
        assert ledger.balance_of(BOB) == 5 * ONE

    def test_threads_are_serialised(self, ledger):
        def worker(user):
            for _ in range(20):
                ledger.stake(user, 5 * ONE)

        threads = [threading.Thread(target=worker, args=(u,)) for u in (ALICE, BOB)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert ledger.balance_of(ALICE) == ledger.balance_of(BOB) == 100 * ONE
        assert ledger.total_reserve == ledger.staked_asset.held() == 200 * ONE


# ═══════════════════════════════════════════════════════════════════
#  Queries and invariants
# ═══════════════════════════════════════════════════════════════════

class TestQueries:
    def test_reward_of_is_pure(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        account = ledger.account_of(ALICE)
        ledger.reward_of(ALICE)
        ledger.reward_of(ALICE)
        assert ledger.account_of(ALICE) == account

    def test_reward_monotonic_between_events(self, ledger, clock):
        ledger.stake(ALICE, 7 * ONE)
        last = 0
        for _ in range(50):
            clock.advance(86_399)
            now = ledger.reward_of(ALICE)
            assert now >= last
            last = now

    def test_pool_summary(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        ledger.stake(BOB, 72 * ONE)
        clock.advance(ONE_YEAR)
        summary = ledger.pool_summary()
        assert summary["apr"] == 10
        assert summary["total_reserve"] == 108 * ONE
        assert summary["depositors"] == 2
        assert summary["total_pending_reward"] == to_base_units("10.8")

    def test_account_of_unknown_is_empty(self, ledger):
        assert ledger.account_of(BOB).is_empty

    def test_clock_stepping_back_accrues_nothing(self, ledger, clock):
        ledger.stake(ALICE, 36 * ONE)
        clock.advance(ONE_YEAR)
        ledger.stake(ALICE, 10 * ONE)
        checkpoint = ledger.account_of(ALICE).checkpoint_time
        clock.advance(-1000)
        assert ledger.reward_of(ALICE) == to_base_units("3.6")
        ledger.stake(ALICE, 10 * ONE)
        assert ledger.account_of(ALICE).checkpoint_time == checkpoint

    def test_reserve_matches_balances_under_random_ops(self, ledger, clock):
        rng = random.Random(1234)
        users = [ALICE, BOB]
        for _ in range(300):
            user = rng.choice(users)
            op = rng.choice(["stake", "withdraw", "claim"])
            clock.advance(rng.randint(0, 30 * 86_400))
            try:
                if op == "stake":
                    ledger.stake(user, rng.randint(1, 20) * ONE)
                elif op == "withdraw":
                    ledger.withdraw(user, rng.randint(0, 15) * ONE)
                else:
                    ledger.claim(user)
            except StakePoolError:
                pass
            assert ledger.total_reserve == sum(
                acc.balance for acc in ledger.accounts.values()
            )
            assert ledger.total_reserve == ledger.staked_asset.held()
