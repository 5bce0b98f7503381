"""
Error taxonomy for the staking ledger.

Every rejected operation raises a subclass of ``StakePoolError`` and
leaves the ledger exactly as it was before the call:

    InvalidConfig        bad constructor arguments (construction never completes)
    InvalidAmount        zero, negative or below-minimum amount
    InsufficientBalance  withdraw exceeds the caller's principal
    NoReward             claim with nothing accrued
    TransferFailed       an asset collaborator refused to move funds
    RateUnavailable      the rate source could not produce a usable rate
    InvariantViolation   a post-operation consistency check failed
    ReentrantCall        a ledger operation was started from inside another one

Nothing is retried automatically; callers reissue the operation.
"""

from __future__ import annotations


class StakePoolError(Exception):
    """Base class for all ledger errors."""

    code: str = "stakepool_error"

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidConfig(StakePoolError, ValueError):
    code = "invalid_config"


class InvalidAmount(StakePoolError, ValueError):
    code = "invalid_amount"


class InsufficientBalance(StakePoolError):
    code = "insufficient_balance"


class NoReward(StakePoolError):
    code = "no_reward"


class TransferFailed(StakePoolError):
    code = "transfer_failed"


class RateUnavailable(StakePoolError):
    code = "rate_unavailable"


class InvariantViolation(StakePoolError):
    code = "invariant_violation"


class ReentrantCall(StakePoolError):
    code = "reentrant_call"
