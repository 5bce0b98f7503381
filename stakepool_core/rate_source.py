"""
Exchange-rate sources consumed at claim time.

A rate is the number of reward-asset base units paid per staked-asset
base unit of settled reward, as an exact ``Decimal``.
"""

from __future__ import annotations

import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Protocol, runtime_checkable

from stakepool_core.errors import RateUnavailable
from stakepool_core.oracle import OracleManager


@runtime_checkable
class RateSource(Protocol):
    def current_rate(self) -> Decimal:
        ...


def as_rate(value: object) -> Decimal:
    """Coerce *value* to a positive finite ``Decimal`` or raise RateUnavailable."""
    if isinstance(value, float):
        # repr() gives the shortest round-tripping literal
        value = repr(value)
    try:
        rate = Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise RateUnavailable(f"Rate is not numeric: {value!r}") from exc
    if not rate.is_finite() or rate <= 0:
        raise RateUnavailable(f"Rate must be positive and finite: {value!r}")
    return rate


class FixedRateSource:
    """Always answers the same rate."""

    def __init__(self, rate: object = 1):
        self._rate = as_rate(rate)

    def current_rate(self) -> Decimal:
        return self._rate

    def set_rate(self, rate: object) -> None:
        self._rate = as_rate(rate)


class OracleRateSource:
    """Median of the fresh prices published for ``base/quote``."""

    def __init__(
        self,
        manager: OracleManager,
        base_asset: str,
        quote_asset: str,
        max_age: float = 3600.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.manager = manager
        self.base_asset = base_asset
        self.quote_asset = quote_asset
        self.max_age = max_age
        self._clock = clock or time.time

    def current_rate(self) -> Decimal:
        agg = self.manager.get_aggregate_price(
            self.base_asset, self.quote_asset,
            max_age=self.max_age, now=self._clock(),
        )
        if agg is None:
            raise RateUnavailable(
                f"No fresh {self.base_asset}/{self.quote_asset} price"
            )
        return as_rate(agg["median"])
