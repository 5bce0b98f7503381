"""
Observable ledger events.

The ledger publishes one event per successful operation:

    Staked(user, amount)
    Withdrawn(user, amount)
    RewardClaimed(user, reward, rate, payout)

Events are appended to an in-memory log and delivered synchronously to
every subscriber after the operation has committed.  A subscriber that
raises is logged and skipped; it can never undo the operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Union

log = logging.getLogger("stakepool.events")


@dataclass(frozen=True)
class Staked:
    user: str
    amount: int
    timestamp: int = 0
    implicit: bool = False  # arrived as a raw transfer rather than stake()

    name = "Staked"

    def to_dict(self) -> dict:
        return {
            "event": self.name,
            "user": self.user,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "implicit": self.implicit,
        }


@dataclass(frozen=True)
class Withdrawn:
    user: str
    amount: int
    timestamp: int = 0

    name = "Withdrawn"

    def to_dict(self) -> dict:
        return {
            "event": self.name,
            "user": self.user,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RewardClaimed:
    user: str
    reward: int         # settled reward, staked-asset denominated
    rate: Decimal       # reward-asset units per staked-asset unit
    payout: int         # reward-asset base units sent
    timestamp: int = 0

    name = "RewardClaimed"

    def to_dict(self) -> dict:
        return {
            "event": self.name,
            "user": self.user,
            "reward": self.reward,
            "rate": str(self.rate),
            "payout": self.payout,
            "timestamp": self.timestamp,
        }


LedgerEvent = Union[Staked, Withdrawn, RewardClaimed]
Listener = Callable[[LedgerEvent], None]


@dataclass
class EventBus:
    """Append-only event log with synchronous fan-out."""
    max_history: int = 10_000
    history: list[LedgerEvent] = field(default_factory=list)
    _listeners: list[Listener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, event: LedgerEvent) -> None:
        self.history.append(event)
        if len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("Event listener failed on %s", event.name)

    def events_for(self, user: str) -> list[LedgerEvent]:
        return [e for e in self.history if e.user == user]

    def of_type(self, kind: type) -> list[LedgerEvent]:
        return [e for e in self.history if isinstance(e, kind)]
