from __future__ import annotations

import sqlite3
from typing import Any, Iterable

from amplifi_ledger.db import store
from amplifi_ledger.db.reward_source import detect_reward_source
from amplifi_ledger.scoring.features import safe_number, to_lamports


def fetch_wallet_rewards(conn: sqlite3.Connection, wallet_pubkey: str) -> list[dict[str, Any]]:
    """Every positive reward row for the wallet, across all epochs and statuses."""
    rewards = detect_reward_source(conn).fetch_wallet_rewards(conn, wallet_pubkey)
    return [reward for reward in rewards if reward["reward_lamports"] > 0]


def compute_claimability(rewards: Iterable[dict[str, Any]], threshold_lamports: int = 0) -> dict[str, Any]:
    """Split reward rows into pending (epoch not settled) and available (settled, unclaimed).

    ``threshold_met`` only gates the aggregate payout; a wallet can hold an
    available balance below the threshold.
    """
    pending_lamports = 0
    available_lamports = 0
    pending_count = 0
    available_count = 0
    available_epoch_ids: dict[str, None] = {}

    for reward in rewards:
        amount = to_lamports(reward.get("reward_lamports"))
        if reward.get("epoch_status") != store.EPOCH_SETTLED:
            pending_lamports += amount
            pending_count += 1
            continue
        if reward.get("claimed"):
            continue
        available_lamports += amount
        available_count += 1
        available_epoch_ids.setdefault(str(reward.get("epoch_id")), None)

    threshold = to_lamports(threshold_lamports)
    return {
        "pending_lamports": pending_lamports,
        "available_lamports": available_lamports,
        "threshold_lamports": threshold,
        "threshold_met": available_lamports >= threshold,
        "pending_reward_count": pending_count,
        "available_reward_count": available_count,
        "available_epoch_ids": list(available_epoch_ids),
    }


def compute_holder_stats(conn: sqlite3.Connection, wallet_pubkey: str) -> dict[str, Any]:
    earned = sum(reward["reward_lamports"] for reward in fetch_wallet_rewards(conn, wallet_pubkey))

    claim_rows = conn.execute(
        "SELECT amount_lamports FROM reward_claims WHERE wallet_pubkey = ?",
        (wallet_pubkey,),
    ).fetchall()
    total_claimed = sum(to_lamports(row["amount_lamports"]) for row in claim_rows)

    # Claims are recorded independently of reward rows; keep earned = claimed + pending.
    total_earned = max(earned, total_claimed)

    campaigns_row = conn.execute(
        """
        SELECT COUNT(DISTINCT campaign_id) AS count
        FROM campaign_participants
        WHERE wallet_pubkey = ? AND status = 'active'
        """,
        (wallet_pubkey,),
    ).fetchone()

    score_rows = conn.execute(
        """
        SELECT final_score FROM engagement_events
        WHERE wallet_pubkey = ? AND is_duplicate = 0 AND is_spam = 0
        """,
        (wallet_pubkey,),
    ).fetchall()
    scores = [safe_number(row["final_score"]) for row in score_rows]

    return {
        "total_earned": total_earned,
        "total_claimed": total_claimed,
        "total_pending": total_earned - total_claimed,
        "campaigns_joined": int(campaigns_row["count"] or 0) if campaigns_row else 0,
        "total_engagements": len(scores),
        "average_score": sum(scores) / len(scores) if scores else 0.0,
    }
