"""
SQLite-based persistence for staking ledger state.

Stores the pool's fixed parameters, running totals and every account so
a service can recover after restart.

Amounts are stored as decimal TEXT: 18-decimal balances overflow
SQLite's 64-bit INTEGER.

Usage:
    store = LedgerStore("data/stakepool.db")
    store.snapshot_ledger(ledger)
    ...
    store.restore_ledger(fresh_ledger)
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from stakepool_core.accrual import StakeAccount
from stakepool_core.errors import InvalidConfig

logger = logging.getLogger("stakepool_storage")


class LedgerStore:
    """Thin SQLite wrapper for persisting ledger state."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/stakepool.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info("Storage opened: %s", db_path)

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS pool (
                id                   INTEGER PRIMARY KEY CHECK (id = 1),
                apr                  INTEGER NOT NULL,
                staked_token         TEXT NOT NULL,
                reward_token         TEXT NOT NULL,
                min_stake            TEXT NOT NULL,
                total_reserve        TEXT NOT NULL DEFAULT '0',
                total_reward_claimed TEXT NOT NULL DEFAULT '0',
                total_reward_paid    TEXT NOT NULL DEFAULT '0'
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                user            TEXT PRIMARY KEY,
                balance         TEXT NOT NULL DEFAULT '0',
                settled_reward  TEXT NOT NULL DEFAULT '0',
                checkpoint_time INTEGER NOT NULL DEFAULT 0
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade StakePool."
            )

    # ── accounts ─────────────────────────────────────────────────

    def load_accounts(self) -> dict[str, StakeAccount]:
        rows = self._conn.execute("SELECT * FROM accounts").fetchall()
        return {
            r["user"]: StakeAccount(
                balance=int(r["balance"]),
                settled_reward=int(r["settled_reward"]),
                checkpoint_time=r["checkpoint_time"],
            )
            for r in rows
        }

    # ── pool ─────────────────────────────────────────────────────

    def load_pool(self) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM pool WHERE id = 1").fetchone()
        if row is None:
            return None
        out = dict(row)
        for key in ("min_stake", "total_reserve", "total_reward_claimed", "total_reward_paid"):
            out[key] = int(out[key])
        return out

    # ── bulk helpers ─────────────────────────────────────────────

    def snapshot_ledger(self, ledger: Any) -> None:
        """Persist the full current state of a ledger in one transaction."""
        c = self._conn
        try:
            c.execute("BEGIN IMMEDIATE")
            c.execute(
                """INSERT OR REPLACE INTO pool
                   (id, apr, staked_token, reward_token, min_stake,
                    total_reserve, total_reward_claimed, total_reward_paid)
                   VALUES (1, ?, ?, ?, ?, ?, ?, ?)""",
                (ledger.apr, ledger.staked_token, ledger.reward_token,
                 str(ledger.min_stake), str(ledger.total_reserve),
                 str(ledger.total_reward_claimed), str(ledger.total_reward_paid)),
            )
            c.execute("DELETE FROM accounts")
            c.executemany(
                """INSERT INTO accounts
                   (user, balance, settled_reward, checkpoint_time)
                   VALUES (?, ?, ?, ?)""",
                [
                    (user, str(acc.balance), str(acc.settled_reward), acc.checkpoint_time)
                    for user, acc in ledger.accounts.items()
                    if not acc.is_empty
                ],
            )
            c.execute("COMMIT")
        except Exception:
            c.execute("ROLLBACK")
            raise
        logger.debug("Snapshot written: %d accounts", len(ledger.accounts))

    def restore_ledger(self, ledger: Any) -> int:
        """
        Load persisted accounts and totals into *ledger*.

        The ledger must have been built with the same APR and tokens.
        Returns the number of accounts restored.
        """
        pool = self.load_pool()
        if pool is None:
            return 0
        if (pool["apr"], pool["staked_token"], pool["reward_token"]) != (
            ledger.apr, ledger.staked_token, ledger.reward_token,
        ):
            raise InvalidConfig(
                "Stored pool parameters do not match this ledger "
                f"(apr={pool['apr']}, staked={pool['staked_token']}, "
                f"reward={pool['reward_token']})"
            )
        accounts = self.load_accounts()
        for user, acc in accounts.items():
            ledger.restore_account(user, acc)
        ledger.total_reward_claimed = pool["total_reward_claimed"]
        ledger.total_reward_paid = pool["total_reward_paid"]
        if ledger.total_reserve != pool["total_reserve"]:
            logger.warning(
                "Stored reserve %d differs from restored balances %d",
                pool["total_reserve"], ledger.total_reserve,
            )
        logger.info("Restored %d accounts", len(accounts))
        return len(accounts)

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
