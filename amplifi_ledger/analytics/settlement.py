from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable

from amplifi_ledger.db import store
from amplifi_ledger.db.reward_source import detect_reward_source
from amplifi_ledger.errors import InvalidRequestError
from amplifi_ledger.scoring.features import safe_number
from amplifi_ledger.scoring.weights import stable_sorted
from amplifi_ledger.utils.time import now_unix

logger = logging.getLogger(__name__)

MAX_EARNERS_PER_EPOCH = 99
BPS_DENOMINATOR = 10_000


def allocate_epoch_rewards(
    scores: Iterable[dict[str, Any]],
    reward_pool_lamports: int,
    max_earners: int = MAX_EARNERS_PER_EPOCH,
) -> list[dict[str, Any]]:
    """Pro-rata split of the pool among the top ``max_earners`` by score.

    Shares are floored to basis points and lamports are floored per wallet,
    so the distributed sum never exceeds the pool.
    """
    ranked = stable_sorted(scores, key=lambda item: safe_number(item.get("total_score")), reverse=True)
    top = ranked[: max(max_earners, 0)]
    total_score = sum(max(safe_number(item.get("total_score")), 0.0) for item in top)

    allocations = []
    for item in top:
        score = max(safe_number(item.get("total_score")), 0.0)
        if total_score <= 0:
            share_bps = 0
        else:
            share_bps = int(score / total_score * BPS_DENOMINATOR)
        allocations.append(
            {
                "wallet_pubkey": item["wallet_pubkey"],
                "share_bps": share_bps,
                "reward_lamports": reward_pool_lamports * share_bps // BPS_DENOMINATOR,
            }
        )
    return allocations


def settle_epoch(
    conn: sqlite3.Connection,
    epoch_id: str,
    now: int | None = None,
    max_earners: int = MAX_EARNERS_PER_EPOCH,
) -> dict[str, Any] | None:
    t = now if now is not None else now_unix()
    epoch = store.fetch_epoch(conn, epoch_id)
    if epoch is None:
        raise InvalidRequestError(f"Epoch not found: {epoch_id}")
    if epoch["status"] != store.EPOCH_ACTIVE:
        logger.info("Epoch %s is not active (status: %s)", epoch_id, epoch["status"])
        return None
    if epoch["end_at_unix"] is None or epoch["end_at_unix"] > t:
        logger.info("Epoch %s has not ended yet", epoch_id)
        return None

    source = detect_reward_source(conn)
    store.update_epoch_status(conn, epoch_id, store.EPOCH_SETTLING)

    try:
        rows = conn.execute(
            """
            SELECT wallet_pubkey, final_score
            FROM engagement_events
            WHERE epoch_id = ? AND is_duplicate = 0 AND is_spam = 0
            ORDER BY rowid
            """,
            (epoch_id,),
        ).fetchall()

        per_wallet: dict[str, dict[str, Any]] = {}
        for row in rows:
            state = per_wallet.setdefault(
                row["wallet_pubkey"],
                {"wallet_pubkey": row["wallet_pubkey"], "total_score": 0.0, "engagement_count": 0},
            )
            state["total_score"] += safe_number(row["final_score"])
            state["engagement_count"] += 1

        allocations = allocate_epoch_rewards(
            per_wallet.values(),
            epoch["reward_pool_lamports"],
            max_earners,
        )
        rewards = []
        for allocation in allocations:
            wallet_state = per_wallet[allocation["wallet_pubkey"]]
            rewards.append(
                {
                    **allocation,
                    "epoch_id": epoch_id,
                    "engagement_count": wallet_state["engagement_count"],
                    "total_score": wallet_state["total_score"],
                }
            )

        source.upsert_rewards(conn, rewards, commit=False)
        total_distributed = sum(reward["reward_lamports"] for reward in rewards)
        total_points = sum(state["total_score"] for state in per_wallet.values())
        store.mark_epoch_settled(
            conn,
            epoch_id,
            settled_at_unix=t,
            distributed_lamports=total_distributed,
            total_engagement_points=total_points,
            participant_count=len(rewards),
            commit=False,
        )
        conn.commit()
    except Exception:  # noqa: BLE001
        conn.rollback()
        store.update_epoch_status(conn, epoch_id, store.EPOCH_ACTIVE)
        raise

    logger.info(
        "Settled epoch %s participants=%d distributed_lamports=%d",
        epoch_id,
        len(rewards),
        total_distributed,
    )
    return {
        "epoch_id": epoch_id,
        "campaign_id": epoch["campaign_id"],
        "epoch_number": epoch["epoch_number"],
        "total_participants": len(rewards),
        "total_engagement_points": total_points,
        "total_distributed_lamports": total_distributed,
        "rewards": rewards,
    }


def settle_ready_epochs(
    conn: sqlite3.Connection,
    now: int | None = None,
    max_earners: int = MAX_EARNERS_PER_EPOCH,
) -> list[dict[str, Any]]:
    t = now if now is not None else now_unix()
    results = []
    for epoch in store.fetch_epochs_ready_for_settlement(conn, t):
        try:
            result = settle_epoch(conn, epoch["id"], now=t, max_earners=max_earners)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to settle epoch %s", epoch["id"])
            continue
        if result:
            results.append(result)
    return results
