"""Access to per-epoch reward rows across both reward-table generations.

Older deployments keep settled rewards in ``epoch_scores``; newer ones in
``epoch_rewards``. Exactly one source is used per database. Detection runs
once per database file and is memoized; in-memory databases are detected on
every call since each connection is a distinct database.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable

from amplifi_ledger.db import store
from amplifi_ledger.scoring.features import require_lamports, to_lamports
from amplifi_ledger.utils.time import now_unix

logger = logging.getLogger(__name__)

_detected: dict[str, "RewardSource"] = {}


class RewardSource:
    table: str = ""
    score_column: str = ""

    def fetch_settled_payouts(
        self,
        conn: sqlite3.Connection,
        from_unix: int | None = None,
    ) -> list[dict[str, Any]]:
        """Positive rewards of settled epochs, tagged with the campaign token mint."""
        params: list[Any] = []
        window_clause = ""
        if from_unix is not None:
            window_clause = "AND e.settled_at_unix >= ?"
            params.append(from_unix)
        rows = conn.execute(
            f"""
            SELECT c.token_mint, r.reward_lamports
            FROM campaigns c
            JOIN epochs e ON e.campaign_id = c.id
            JOIN {self.table} r ON r.epoch_id = e.id
            WHERE e.status = ?
              AND c.token_mint IS NOT NULL AND c.token_mint <> ''
              {window_clause}
            """,
            [store.EPOCH_SETTLED, *params],
        ).fetchall()
        payouts = []
        for row in rows:
            amount = to_lamports(row["reward_lamports"])
            if amount <= 0:
                continue
            payouts.append({"token_mint": row["token_mint"], "reward_lamports": amount})
        return payouts

    def fetch_wallet_rewards(self, conn: sqlite3.Connection, wallet_pubkey: str) -> list[dict[str, Any]]:
        rows = conn.execute(
            f"""
            SELECT r.epoch_id, r.reward_lamports, r.reward_share_bps, r.engagement_count,
                   r.claimed AS row_claimed,
                   e.campaign_id, e.epoch_number, e.status AS epoch_status, e.settled_at_unix,
                   c.name AS campaign_name,
                   rc.id AS claim_id
            FROM {self.table} r
            JOIN epochs e ON e.id = r.epoch_id
            LEFT JOIN campaigns c ON c.id = e.campaign_id
            LEFT JOIN reward_claims rc
              ON rc.epoch_id = r.epoch_id AND rc.wallet_pubkey = r.wallet_pubkey
            WHERE r.wallet_pubkey = ?
            ORDER BY COALESCE(e.settled_at_unix, 0) DESC, e.epoch_number DESC
            """,
            (wallet_pubkey,),
        ).fetchall()
        rewards = []
        for row in rows:
            rewards.append(
                {
                    "epoch_id": row["epoch_id"],
                    "campaign_id": row["campaign_id"],
                    "campaign_name": row["campaign_name"],
                    "epoch_number": row["epoch_number"],
                    "reward_lamports": to_lamports(row["reward_lamports"]),
                    "share_bps": row["reward_share_bps"] or 0,
                    "engagement_count": row["engagement_count"] or 0,
                    "epoch_status": row["epoch_status"],
                    "settled_at_unix": row["settled_at_unix"],
                    "claimed": bool(row["row_claimed"]) or row["claim_id"] is not None,
                }
            )
        return rewards

    def upsert_rewards(
        self,
        conn: sqlite3.Connection,
        rewards: Iterable[dict[str, Any]],
        commit: bool = True,
    ) -> None:
        calculated_at = now_unix()
        rows = []
        for reward in rewards:
            rows.append(
                (
                    reward.get("epoch_id"),
                    reward.get("wallet_pubkey"),
                    str(require_lamports(reward.get("reward_lamports"), "reward_lamports")),
                    reward.get("share_bps", 0),
                    reward.get("engagement_count", 0),
                    reward.get("total_score", 0.0),
                    1 if reward.get("claimed") else 0,
                    calculated_at,
                )
            )
        conn.executemany(
            f"""
            INSERT INTO {self.table}
            (epoch_id, wallet_pubkey, reward_lamports, reward_share_bps, engagement_count,
             {self.score_column}, claimed, calculated_at_unix)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (epoch_id, wallet_pubkey) DO UPDATE SET
                reward_lamports = excluded.reward_lamports,
                reward_share_bps = excluded.reward_share_bps,
                engagement_count = excluded.engagement_count,
                {self.score_column} = excluded.{self.score_column},
                calculated_at_unix = excluded.calculated_at_unix
            """,
            rows,
        )
        if commit:
            conn.commit()


class EpochRewardTable(RewardSource):
    table = "epoch_rewards"
    score_column = "total_score"


class EpochScoreTable(RewardSource):
    table = "epoch_scores"
    score_column = "final_score"


def detect_reward_source(conn: sqlite3.Connection) -> RewardSource:
    db_file = _database_file(conn)
    if db_file and db_file in _detected:
        return _detected[db_file]

    if store.table_exists(conn, EpochRewardTable.table):
        source: RewardSource = EpochRewardTable()
    elif store.table_exists(conn, EpochScoreTable.table):
        source = EpochScoreTable()
    else:
        raise RuntimeError("No reward table present (expected epoch_rewards or epoch_scores)")

    logger.info("Reward source detected: %s", source.table)
    if db_file:
        _detected[db_file] = source
    return source


def _database_file(conn: sqlite3.Connection) -> str:
    for row in conn.execute("PRAGMA database_list").fetchall():
        if row[1] == "main":
            return row[2] or ""
    return ""
