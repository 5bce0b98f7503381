"""
Asset collaborators for the staking ledger.

The ledger never touches balances of the staked or reward asset directly.
It talks to *handles* through two calls:

    transfer_in(sender, amount)     -> bool   pull funds into the ledger
    transfer_out(recipient, amount) -> bool   push funds out of the ledger

``Token`` is an in-memory fungible token (balances, allowances, mint,
transfer, approve, transfer_from) used for tests and local runs, and
``TokenAsset`` adapts it to the handle interface for a given holder.

A holder may register a *receive hook* on a token.  Plain ``transfer``
calls to that holder invoke the hook after the balances move; if the
hook raises, the transfer is reverted and the exception propagates.
Pulls made with ``transfer_from`` never notify the hook.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, runtime_checkable

from stakepool_core.address import is_zero_address, to_checksum_address

log = logging.getLogger("stakepool.assets")

ReceiveHook = Callable[[str, int], None]


@runtime_checkable
class StakedAssetHandle(Protocol):
    """What the ledger needs from the staked asset."""
    address: str

    def transfer_in(self, sender: str, amount: int) -> bool:
        ...

    def transfer_out(self, recipient: str, amount: int) -> bool:
        ...


@runtime_checkable
class RewardAssetHandle(Protocol):
    """What the ledger needs from the reward asset."""
    address: str

    def transfer_out(self, recipient: str, amount: int) -> bool:
        ...


class Token:
    """Minimal fungible token with allowances and receive hooks."""

    def __init__(self, symbol: str, address: str, decimals: int = 18):
        if is_zero_address(address):
            raise ValueError("Token address can not be zero")
        self.symbol = symbol
        self.address = to_checksum_address(address)
        self.decimals = decimals
        self.total_supply: int = 0
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self._receive_hooks: dict[str, ReceiveHook] = {}

    # ── reads ───────────────────────────────────────────────────────

    def balance_of(self, owner: str) -> int:
        return self.balances.get(owner, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    # ── supply ──────────────────────────────────────────────────────

    def mint(self, to: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Mint amount must be non-negative")
        self.balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    # ── movements ───────────────────────────────────────────────────

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            return False
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move *amount* from *sender* to *recipient*.

        Returns False (and changes nothing) on a negative amount or
        insufficient balance.  Fires the recipient's receive hook, if any.
        """
        if not self._move(sender, recipient, amount):
            return False
        hook = self._receive_hooks.get(recipient)
        if hook is not None:
            try:
                hook(sender, amount)
            except Exception:
                self._move(recipient, sender, amount)
                raise
        return True

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        """Spend *owner*'s funds under *spender*'s allowance."""
        allowed = self.allowance(owner, spender)
        if amount > allowed:
            return False
        if not self._move(owner, recipient, amount):
            return False
        self.allowances[(owner, spender)] = allowed - amount
        return True

    def _move(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(sender) < amount:
            return False
        self.balances[sender] = self.balance_of(sender) - amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        return True

    # ── hooks ───────────────────────────────────────────────────────

    def register_receive_hook(self, holder: str, hook: ReceiveHook) -> None:
        self._receive_hooks[holder] = hook

    def unregister_receive_hook(self, holder: str) -> None:
        self._receive_hooks.pop(holder, None)

    def __repr__(self) -> str:
        return f"Token({self.symbol}, {self.address})"


class TokenAsset:
    """
    Adapts a ``Token`` to the ledger's handle interface.

    ``holder`` is the identity that keeps the ledger's funds.  When
    ``funder`` is set, ``transfer_out`` spends the funder's allowance to
    ``holder`` instead of the holder's own balance; that is how a reward
    reserve is pre-approved without moving it up front.
    """

    def __init__(self, token: Token, holder: str, funder: Optional[str] = None):
        self.token = token
        self.holder = holder
        self.funder = funder

    @property
    def address(self) -> str:
        return self.token.address

    @property
    def symbol(self) -> str:
        return self.token.symbol

    def transfer_in(self, sender: str, amount: int) -> bool:
        ok = self.token.transfer_from(self.holder, sender, self.holder, amount)
        if not ok:
            log.debug("%s pull of %d from %s refused", self.symbol, amount, sender)
        return ok

    def transfer_out(self, recipient: str, amount: int) -> bool:
        if self.funder is not None:
            ok = self.token.transfer_from(self.holder, self.funder, recipient, amount)
        else:
            ok = self.token.transfer(self.holder, recipient, amount)
        if not ok:
            log.debug("%s push of %d to %s refused", self.symbol, amount, recipient)
        return ok

    def watch_receipts(self, hook: ReceiveHook) -> None:
        """Invoke *hook(sender, amount)* on raw transfers to the holder."""
        self.token.register_receive_hook(self.holder, hook)

    def held(self) -> int:
        """Balance currently held by the ledger's holder identity."""
        return self.token.balance_of(self.holder)

    def available(self) -> int:
        """Amount ``transfer_out`` could move right now."""
        if self.funder is not None:
            return min(
                self.token.allowance(self.funder, self.holder),
                self.token.balance_of(self.funder),
            )
        return self.held()

    def __repr__(self) -> str:
        return f"TokenAsset({self.symbol}, holder={self.holder})"
