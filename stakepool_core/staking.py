"""
Collateral staking ledger with continuously accruing rewards.

Depositors stake a base asset and earn a reward entitlement at a fixed
APR.  The entitlement is denominated in staked-asset units while it
accrues and is converted into the reward asset at the live rate when
claimed.

Operation order
───────────────
Every mutating call runs under one non-reentrant guard and:

  1. validates its arguments (no state touched on rejection),
  2. settles the caller's account (``accrual.settle``) so the interval
     that already elapsed is priced against the old principal,
  3. applies the balance change,
  4. moves funds through the asset handle.

``stake`` pulls funds before crediting.  ``withdraw`` and ``claim``
update the books first and push funds last; if the push fails the
books are restored, so a call either fully succeeds or has no effect.

A collaborator that calls back into the ledger while an operation is
in flight (a receive hook fired by a payout, say) gets ``ReentrantCall``;
the outer operation then fails and is rolled back as a whole.

Raw transfers of the staked asset to the ledger's holder identity are
treated as an implicit ``stake`` by the sender (see ``receive``).
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from decimal import Decimal
from types import MappingProxyType
from typing import Callable, Iterator, Mapping, Optional

from stakepool_core.accrual import (
    MAX_APR,
    MIN_APR,
    StakeAccount,
    clear_reward,
    credit,
    debit,
    pending_reward,
    projected_reward,
    settle,
)
from stakepool_core.address import is_zero_address
from stakepool_core.errors import (
    InsufficientBalance,
    InvalidAmount,
    InvalidConfig,
    InvariantViolation,
    NoReward,
    RateUnavailable,
    ReentrantCall,
    StakePoolError,
    TransferFailed,
)
from stakepool_core.events import EventBus, RewardClaimed, Staked, Withdrawn
from stakepool_core.invariants import InvariantChecker
from stakepool_core.precision import BASE_UNITS_PER_UNIT, format_amount, multiply_rate
from stakepool_core.rate_source import RateSource, as_rate

logger = logging.getLogger("stakepool.staking")

# Each individual stake must be at least 5 whole units.
MIN_STAKE: int = 5 * BASE_UNITS_PER_UNIT


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _wall_clock() -> int:
    return int(time.time())


class StakingLedger:
    """
    Owns the reserve and every depositor's ``StakeAccount``.

    Parameters
    ----------
    staked_asset : handle with ``address``, ``transfer_in``, ``transfer_out``
    reward_asset : handle with ``address``, ``transfer_out``
    apr : int
        Annual percentage rate, 1..100, fixed for the ledger's lifetime.
    rate_source : optional, ``current_rate() -> Decimal``
        Queried only by ``claim``.
    min_stake : int
        Floor applied to every single stake.
    clock : callable returning seconds
    events : EventBus to publish to (a private one by default)
    verify_invariants : bool
        Run ``InvariantChecker`` after every mutation.
    """

    def __init__(
        self,
        staked_asset,
        reward_asset,
        apr: int,
        rate_source: Optional[RateSource] = None,
        *,
        min_stake: int = MIN_STAKE,
        clock: Optional[Callable[[], float]] = None,
        events: Optional[EventBus] = None,
        verify_invariants: bool = False,
    ) -> None:
        if staked_asset is None or is_zero_address(getattr(staked_asset, "address", None)):
            raise InvalidConfig("Staked token address can not be zero")
        if reward_asset is None or is_zero_address(getattr(reward_asset, "address", None)):
            raise InvalidConfig("Reward token address can not be zero")
        if not _is_int(apr) or not MIN_APR <= apr <= MAX_APR:
            raise InvalidConfig(f"APR must be between {MIN_APR} and {MAX_APR}")
        if not _is_int(min_stake) or min_stake <= 0:
            raise InvalidConfig("Minimum stake must be a positive integer")

        self._staked_asset = staked_asset
        self._reward_asset = reward_asset
        self._apr = apr
        self._rate_source = rate_source
        self._min_stake = min_stake
        self._clock = clock or _wall_clock
        self.events = events if events is not None else EventBus()
        self.verify_invariants = verify_invariants
        self._checker = InvariantChecker()

        self._lock = threading.Lock()
        # thread id of the operation in flight, None when idle
        self._owner: Optional[int] = None
        self._accounts: dict[str, StakeAccount] = {}
        self._total_reserve: int = 0
        # Reward settled and paid out, staked-asset units / reward-asset units.
        self.total_reward_claimed: int = 0
        self.total_reward_paid: int = 0

        watch = getattr(staked_asset, "watch_receipts", None)
        if watch is not None:
            watch(self.receive)

        logger.info(
            "Staking ledger ready: staked=%s reward=%s apr=%d%%",
            staked_asset.address, reward_asset.address, apr,
        )

    # ── immutable parameters ────────────────────────────────────────

    @property
    def apr(self) -> int:
        return self._apr

    @property
    def min_stake(self) -> int:
        return self._min_stake

    @property
    def staked_asset(self):
        return self._staked_asset

    @property
    def reward_asset(self):
        return self._reward_asset

    @property
    def rate_source(self) -> Optional[RateSource]:
        return self._rate_source

    @property
    def staked_token(self) -> str:
        return self._staked_asset.address

    @property
    def reward_token(self) -> str:
        return self._reward_asset.address

    # ── queries ─────────────────────────────────────────────────────

    @property
    def total_reserve(self) -> int:
        return self._total_reserve

    @property
    def accounts(self) -> Mapping[str, StakeAccount]:
        return MappingProxyType(self._accounts)

    def balance_of(self, user: str) -> int:
        acc = self._accounts.get(user)
        return acc.balance if acc is not None else 0

    def reward_of(self, user: str) -> int:
        """Settled reward plus accrual up to now.  Mutates nothing."""
        acc = self._accounts.get(user)
        if acc is None:
            return 0
        return projected_reward(acc, self._apr, self._now())

    def account_of(self, user: str) -> StakeAccount:
        return self._accounts.get(user, StakeAccount())

    def depositors(self) -> list[str]:
        return [u for u, acc in self._accounts.items() if acc.balance > 0]

    def pool_summary(self) -> dict:
        now = self._now()
        pending = sum(
            acc.settled_reward + pending_reward(acc, self._apr, now)
            for acc in self._accounts.values()
        )
        return {
            "apr": self._apr,
            "staked_token": self.staked_token,
            "reward_token": self.reward_token,
            "min_stake": self._min_stake,
            "total_reserve": self._total_reserve,
            "depositors": len(self.depositors()),
            "accounts": len(self._accounts),
            "total_pending_reward": pending,
            "total_reward_claimed": self.total_reward_claimed,
            "total_reward_paid": self.total_reward_paid,
        }

    # ── operations ──────────────────────────────────────────────────

    def stake(self, user: str, amount: int) -> StakeAccount:
        """Deposit *amount* of the staked asset for *user*."""
        with self._exclusive("stake"), self._atomic("stake", user):
            self._check_stake_amount(amount)
            account = settle(self.account_of(user), self._apr, self._now())
            self._push_or_pull(
                lambda: self._staked_asset.transfer_in(user, amount),
                f"Pulling {amount} of staked asset from {user} failed",
            )
            try:
                account = self._put(user, credit(account, amount), amount)
            except InvariantViolation:
                self._refund(user, amount)
                raise
        logger.info("Staked: user=%s amount=%s balance=%s",
                    user, format_amount(amount), format_amount(account.balance))
        self.events.emit(Staked(user, amount, account.checkpoint_time))
        return account

    def receive(self, sender: str, amount: int) -> StakeAccount:
        """
        Credit a raw transfer already sitting in the ledger's holdings.

        Same minimum and settlement rules as ``stake``.  Raising here makes
        the token revert the transfer.
        """
        with self._exclusive("receive"), self._atomic("receive", sender):
            self._check_stake_amount(amount)
            account = settle(self.account_of(sender), self._apr, self._now())
            account = self._put(sender, credit(account, amount), amount)
        logger.info("Implicit stake: user=%s amount=%s", sender, format_amount(amount))
        self.events.emit(Staked(sender, amount, account.checkpoint_time, implicit=True))
        return account

    def withdraw(self, user: str, amount: int) -> StakeAccount:
        """Return *amount* of principal to *user*."""
        with self._exclusive("withdraw"), self._atomic("withdraw", user):
            if not _is_int(amount) or amount <= 0:
                raise InvalidAmount("Withdraw amount can not be 0")
            balance = self.balance_of(user)
            if amount > balance:
                raise InsufficientBalance(
                    "User doesn't have enough balance",
                    balance=balance, requested=amount,
                )
            account = settle(self.account_of(user), self._apr, self._now())
            account = self._put(user, debit(account, amount), -amount)
            self._push_or_pull(
                lambda: self._staked_asset.transfer_out(user, amount),
                f"Sending {amount} of staked asset to {user} failed",
            )
        logger.info("Withdrawn: user=%s amount=%s balance=%s",
                    user, format_amount(amount), format_amount(account.balance))
        self.events.emit(Withdrawn(user, amount, account.checkpoint_time))
        return account

    def claim(self, user: str) -> int:
        """
        Pay out everything accrued so far, converted at the current rate.

        Returns the payout in reward-asset base units.
        """
        with self._exclusive("claim"), self._atomic("claim", user):
            account = settle(self.account_of(user), self._apr, self._now())
            reward = account.settled_reward
            if reward == 0:
                raise NoReward("No reward to claim")
            rate = self._current_rate()
            payout = multiply_rate(reward, rate)
            if payout == 0:
                raise NoReward(
                    "Reward too small to pay at the current rate",
                    reward=reward, rate=str(rate),
                )
            account = self._put(user, clear_reward(account), 0)
            self.total_reward_claimed += reward
            self.total_reward_paid += payout
            self._push_or_pull(
                lambda: self._reward_asset.transfer_out(user, payout),
                f"Sending {payout} of reward asset to {user} failed",
            )
        logger.info(
            "Claimed: user=%s reward=%s rate=%s payout=%d",
            user, format_amount(reward), rate, payout,
        )
        self.events.emit(RewardClaimed(user, reward, rate, payout, account.checkpoint_time))
        return payout

    # ── restore (storage) ───────────────────────────────────────────

    def restore_account(self, user: str, account: StakeAccount) -> None:
        """Install a persisted account, keeping the reserve consistent."""
        with self._exclusive("restore"):
            previous = self._accounts.get(user)
            if previous is not None:
                self._total_reserve -= previous.balance
            self._accounts[user] = account
            self._total_reserve += account.balance

    # ── internals ───────────────────────────────────────────────────

    def _now(self) -> int:
        return int(self._clock())

    def _check_stake_amount(self, amount: object) -> None:
        if not _is_int(amount) or amount < self._min_stake:
            raise InvalidAmount(
                f"Staking amount should be minimum {self._min_stake}",
                amount=amount,
            )

    def _current_rate(self) -> Decimal:
        if self._rate_source is None:
            raise RateUnavailable("No rate source configured")
        try:
            raw = self._rate_source.current_rate()
        except StakePoolError:
            raise
        except Exception as exc:
            raise RateUnavailable(f"Rate source failed: {exc}") from exc
        return as_rate(raw)

    def _put(self, user: str, account: StakeAccount, reserve_delta: int) -> StakeAccount:
        if self.verify_invariants:
            self._checker.capture(self)
        self._accounts[user] = account
        self._total_reserve += reserve_delta
        if self.verify_invariants:
            ok, msg = self._checker.verify(self)
            if not ok:
                raise InvariantViolation(msg)
        return account

    @staticmethod
    def _push_or_pull(transfer: Callable[[], bool], message: str) -> None:
        try:
            ok = transfer()
        except StakePoolError:
            raise
        except Exception as exc:
            raise TransferFailed(f"{message}: {exc}") from exc
        if not ok:
            raise TransferFailed(message)

    def _refund(self, user: str, amount: int) -> None:
        if not self._staked_asset.transfer_out(user, amount):
            logger.critical("Refund of %d to %s failed after rollback", amount, user)

    @contextmanager
    def _exclusive(self, op: str) -> Iterator[None]:
        """Serialise operations across threads; refuse nested ones on the same thread."""
        me = threading.get_ident()
        if self._owner == me:
            raise ReentrantCall(f"{op} called while another ledger operation is in progress")
        with self._lock:
            self._owner = me
            try:
                yield
            finally:
                self._owner = None

    @contextmanager
    def _atomic(self, op: str, user: str) -> Iterator[None]:
        """Restore the caller's account and the totals if the body raises."""
        had_account = user in self._accounts
        previous = self._accounts.get(user)
        reserve = self._total_reserve
        claimed = self.total_reward_claimed
        paid = self.total_reward_paid
        try:
            yield
        except BaseException as exc:
            if had_account:
                self._accounts[user] = previous  # type: ignore[assignment]
            else:
                self._accounts.pop(user, None)
            self._total_reserve = reserve
            self.total_reward_claimed = claimed
            self.total_reward_paid = paid
            if isinstance(exc, StakePoolError):
                logger.warning("%s rejected for %s: %s", op, user, exc)
            raise
