"""
Price oracle for StakePool.

Any account can publish price feeds:
  - set_oracle: create or update an oracle with price data
  - delete_oracle: remove an oracle
  - get_aggregate_price: median / trimmed mean across fresh oracles

Each oracle carries up to 10 price entries per update, each with an
asset pair, an integer price and a decimal scale (price × 10^-scale),
the same shape as on-chain aggregator answers.  Prices are kept as
``Decimal`` so a rate read back from the oracle is exact.
"""

from __future__ import annotations

import statistics
import time
from dataclasses import dataclass, field
from decimal import Decimal


@dataclass
class PriceEntry:
    """A single price data point within an oracle."""
    base_asset: str          # e.g. "ETH"
    quote_asset: str         # e.g. "USDC"
    price: int               # raw answer
    scale: int = 0           # decimal scale (price * 10^-scale)
    timestamp: float = field(default_factory=time.time)

    @property
    def scaled_price(self) -> Decimal:
        return Decimal(self.price).scaleb(-self.scale)

    def to_dict(self) -> dict:
        return {
            "base_asset": self.base_asset,
            "quote_asset": self.quote_asset,
            "price": self.price,
            "scale": self.scale,
            "scaled_price": str(self.scaled_price),
            "timestamp": self.timestamp,
        }


@dataclass
class Oracle:
    """A single oracle instance owned by an account."""
    oracle_id: str
    owner: str
    provider: str = ""
    prices: list[PriceEntry] = field(default_factory=list)
    last_update: float = field(default_factory=time.time)
    document_id: int = 0     # owner-scoped sequence number

    def to_dict(self) -> dict:
        return {
            "oracle_id": self.oracle_id,
            "owner": self.owner,
            "provider": self.provider,
            "document_id": self.document_id,
            "last_update": self.last_update,
            "prices": [p.to_dict() for p in self.prices],
        }


MAX_PRICE_ENTRIES = 10
MAX_ORACLES_PER_ACCOUNT = 100


def _entries(prices: list[dict], now: float) -> list[PriceEntry]:
    return [
        PriceEntry(
            base_asset=p.get("base_asset", ""),
            quote_asset=p.get("quote_asset", ""),
            price=int(p.get("price", 0)),
            scale=int(p.get("scale", 0)),
            timestamp=now,
        )
        for p in prices
    ]


class OracleManager:
    """Manages all published price oracles."""

    def __init__(self):
        self.oracles: dict[str, Oracle] = {}
        self._owner_index: dict[str, list[str]] = {}
        self._next_seq: dict[str, int] = {}

    def _make_id(self, owner: str, doc_id: int) -> str:
        return f"{owner}:{doc_id}"

    def set_oracle(self, owner: str, document_id: int | None = None,
                   provider: str = "",
                   prices: list[dict] | None = None,
                   now: float | None = None) -> tuple[bool, str, Oracle | None]:
        """Create or update an oracle.  Returns (ok, msg, oracle)."""
        if now is None:
            now = time.time()
        if document_id is None:
            document_id = self._next_seq.get(owner, 0)

        if prices and len(prices) > MAX_PRICE_ENTRIES:
            return False, f"Max {MAX_PRICE_ENTRIES} price entries per update", None
        for p in prices or []:
            if int(p.get("price", 0)) <= 0:
                return False, "Price must be positive", None

        oid = self._make_id(owner, document_id)
        existing = self.oracles.get(oid)

        if existing is None:
            owned = self._owner_index.get(owner, [])
            if len(owned) >= MAX_ORACLES_PER_ACCOUNT:
                return False, f"Max {MAX_ORACLES_PER_ACCOUNT} oracles per account", None

            oracle = Oracle(
                oracle_id=oid,
                owner=owner,
                provider=provider,
                document_id=document_id,
                prices=_entries(prices or [], now),
                last_update=now,
            )
            self.oracles[oid] = oracle
            self._owner_index.setdefault(owner, []).append(oid)
            self._next_seq[owner] = max(
                self._next_seq.get(owner, 0), document_id + 1)
            return True, "Oracle created", oracle

        if provider:
            existing.provider = provider
        if prices:
            existing.prices = _entries(prices, now)
        existing.last_update = now
        return True, "Oracle updated", existing

    def delete_oracle(self, owner: str,
                      document_id: int) -> tuple[bool, str]:
        """Delete an oracle."""
        oid = self._make_id(owner, document_id)
        if oid not in self.oracles:
            return False, "Oracle not found"
        del self.oracles[oid]
        owned = self._owner_index.get(owner, [])
        if oid in owned:
            owned.remove(oid)
        return True, "Oracle deleted"

    def get_oracle(self, owner: str, document_id: int) -> Oracle | None:
        return self.oracles.get(self._make_id(owner, document_id))

    def get_oracles_by_owner(self, owner: str) -> list[Oracle]:
        oids = self._owner_index.get(owner, [])
        return [self.oracles[oid] for oid in oids if oid in self.oracles]

    def get_aggregate_price(self, base_asset: str, quote_asset: str,
                            trim: int = 20,
                            max_age: float = 3600.0,
                            now: float | None = None) -> dict | None:
        """
        Aggregate price from all oracles reporting this pair.

        Stale entries (older than ``max_age`` seconds) are ignored.  The
        mean is trimmed (top/bottom ``trim`` % removed); the median uses
        every fresh value.  Returns None when nothing fresh is reported.
        """
        if now is None:
            now = time.time()
        values: list[Decimal] = []

        for oracle in self.oracles.values():
            for pe in oracle.prices:
                if pe.base_asset == base_asset and pe.quote_asset == quote_asset:
                    if now - pe.timestamp <= max_age:
                        values.append(pe.scaled_price)

        if not values:
            return None

        values.sort()
        trim_count = max(0, int(len(values) * trim / 100))
        if trim_count > 0 and len(values) > 2 * trim_count:
            trimmed = values[trim_count: -trim_count]
        else:
            trimmed = values

        return {
            "base_asset": base_asset,
            "quote_asset": quote_asset,
            "mean": sum(trimmed, Decimal(0)) / len(trimmed),
            "median": statistics.median(values),
            "count": len(values),
            "trimmed_count": len(trimmed),
        }

    def get_all_oracles(self) -> list[dict]:
        return [o.to_dict() for o in self.oracles.values()]
