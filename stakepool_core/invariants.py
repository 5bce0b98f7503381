"""
Post-operation invariant checks for the staking ledger.

  - Total reserve equals the sum of all account balances
  - No balance or settled reward is negative
  - No account checkpoint moves backwards
  - The staked asset actually held by the ledger covers the reserve
    (only when the staked-asset handle can report its holdings)

``StakingLedger`` runs these after every mutating operation when built
with ``verify_invariants=True``; a failure rolls the operation back.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class LedgerSnapshot:
    """Key ledger fields captured before an operation."""
    total_reserve: int = 0
    account_balances: dict[str, int] = field(default_factory=dict)
    account_checkpoints: dict[str, int] = field(default_factory=dict)


class InvariantChecker:
    """
    Captures a pre-operation snapshot and validates invariants after the
    operation has been applied.
    """

    def __init__(self):
        self._snapshot: LedgerSnapshot | None = None

    def capture(self, ledger) -> None:
        snap = LedgerSnapshot(total_reserve=ledger.total_reserve)
        for user, acc in ledger.accounts.items():
            snap.account_balances[user] = acc.balance
            snap.account_checkpoints[user] = acc.checkpoint_time
        self._snapshot = snap

    def verify(self, ledger) -> tuple[bool, str]:
        """Returns (passed, error_message)."""
        errors: list[str] = []
        for check in (
            self._check_reserve_matches_balances,
            self._check_non_negative,
            self._check_checkpoints_monotonic,
            self._check_holdings_cover_reserve,
        ):
            ok, msg = check(ledger)
            if not ok:
                errors.append(msg)
        if errors:
            return False, "; ".join(errors)
        return True, ""

    # ── individual checks ───────────────────────────────────────────

    @staticmethod
    def _check_reserve_matches_balances(ledger) -> tuple[bool, str]:
        total = sum(acc.balance for acc in ledger.accounts.values())
        if total != ledger.total_reserve:
            return False, (
                f"Reserve mismatch: total_reserve={ledger.total_reserve} "
                f"sum(balances)={total}"
            )
        return True, ""

    @staticmethod
    def _check_non_negative(ledger) -> tuple[bool, str]:
        if ledger.total_reserve < 0:
            return False, f"Negative reserve: {ledger.total_reserve}"
        for user, acc in ledger.accounts.items():
            if acc.balance < 0:
                return False, f"Negative balance for {user}: {acc.balance}"
            if acc.settled_reward < 0:
                return False, f"Negative reward for {user}: {acc.settled_reward}"
        return True, ""

    def _check_checkpoints_monotonic(self, ledger) -> tuple[bool, str]:
        if self._snapshot is None:
            return True, ""
        for user, before in self._snapshot.account_checkpoints.items():
            acc = ledger.accounts.get(user)
            if acc is not None and acc.checkpoint_time < before:
                return False, (
                    f"Checkpoint moved backwards for {user}: "
                    f"{before} -> {acc.checkpoint_time}"
                )
        return True, ""

    @staticmethod
    def _check_holdings_cover_reserve(ledger) -> tuple[bool, str]:
        held_fn = getattr(ledger.staked_asset, "held", None)
        if held_fn is None:
            return True, ""
        held = held_fn()
        if held < ledger.total_reserve:
            return False, (
                f"Holdings below reserve: held={held} "
                f"total_reserve={ledger.total_reserve}"
            )
        return True, ""
