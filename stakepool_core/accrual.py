"""
Lazy, checkpointed reward accrual.

No background process ever touches an account.  Instead each account
remembers the moment it was last brought up to date (its *checkpoint*)
and the reward locked in up to that moment (``settled_reward``).  At any
later time ``t`` the reward owed is

    settled_reward + balance × apr/100 × (t − checkpoint_time) / SECONDS_PER_YEAR

Every mutating operation first calls ``settle()`` so the interval that
already elapsed is priced against the *old* principal, and only then
changes the balance.

Rounding
────────
The pending term is one integer floor division over non-negative
integers:

    pending = balance × apr × elapsed // (100 × SECONDS_PER_YEAR)

It never rounds up, and a settlement that lands exactly on a whole year
boundary reproduces ``balance × apr // 100`` with no drift.  Dust lost
to truncation at one settlement is not carried to the next.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

# The reward year is 360 days.
SECONDS_PER_DAY: int = 86_400
DAYS_PER_YEAR: int = 360
SECONDS_PER_YEAR: int = DAYS_PER_YEAR * SECONDS_PER_DAY

MIN_APR: int = 1
MAX_APR: int = 100


@dataclass(frozen=True)
class StakeAccount:
    """Immutable snapshot of one depositor's position."""
    balance: int = 0
    settled_reward: int = 0
    checkpoint_time: int = 0

    @property
    def is_empty(self) -> bool:
        """Zero principal and nothing settled: same as no account at all."""
        return self.balance == 0 and self.settled_reward == 0

    def to_dict(self) -> dict:
        return {
            "balance": self.balance,
            "settled_reward": self.settled_reward,
            "checkpoint_time": self.checkpoint_time,
        }


def elapsed_since(account: StakeAccount, now: int) -> int:
    # A clock that steps backwards accrues nothing.
    return max(0, now - account.checkpoint_time)


def pending_reward(account: StakeAccount, apr: int, now: int) -> int:
    """Reward accrued since the checkpoint, not yet settled."""
    elapsed = elapsed_since(account, now)
    if account.balance == 0 or elapsed == 0:
        return 0
    return account.balance * apr * elapsed // (100 * SECONDS_PER_YEAR)


def projected_reward(account: StakeAccount, apr: int, now: int) -> int:
    """Total reward owed at *now* without touching the account."""
    return account.settled_reward + pending_reward(account, apr, now)


def settle(account: StakeAccount, apr: int, now: int) -> StakeAccount:
    """
    Lock in the reward accrued since the last checkpoint.

    Returns a new account whose ``settled_reward`` includes the pending
    amount and whose checkpoint is *now*.  The checkpoint never moves
    backwards.
    """
    return replace(
        account,
        settled_reward=account.settled_reward + pending_reward(account, apr, now),
        checkpoint_time=max(now, account.checkpoint_time),
    )


def credit(account: StakeAccount, amount: int) -> StakeAccount:
    return replace(account, balance=account.balance + amount)


def debit(account: StakeAccount, amount: int) -> StakeAccount:
    if amount > account.balance:
        raise ValueError(f"debit of {amount} exceeds balance {account.balance}")
    return replace(account, balance=account.balance - amount)


def clear_reward(account: StakeAccount) -> StakeAccount:
    return replace(account, settled_reward=0)
