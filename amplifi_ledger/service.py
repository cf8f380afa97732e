"""Query entry points shared by the HTTP layer and the tools.

Inputs are validated before the store is touched. Lamport amounts leave
this module as decimal strings.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from solders.pubkey import Pubkey

from amplifi_ledger.analytics.claimability import compute_claimability, compute_holder_stats, fetch_wallet_rewards
from amplifi_ledger.analytics.rankings import compute_rankings, normalize_period
from amplifi_ledger.config import AppConfig
from amplifi_ledger.db import store
from amplifi_ledger.errors import InvalidRequestError, StoreUnavailableError
from amplifi_ledger.scoring.features import lamports_to_sol


def open_ledger(config: AppConfig) -> sqlite3.Connection | None:
    if not config.has_database:
        return None
    conn = store.get_connection(config.database.path, config.database.timeout_s)
    store.init_db(conn)
    return conn


def validate_wallet(wallet: Any) -> str:
    wallet_pubkey = str(wallet or "").strip()
    if not wallet_pubkey:
        raise InvalidRequestError("wallet required")
    try:
        Pubkey.from_string(wallet_pubkey)
    except ValueError as exc:
        raise InvalidRequestError("Invalid wallet address") from exc
    return wallet_pubkey


def validate_limit(limit: Any, config: AppConfig) -> int:
    if limit is None or limit == "":
        return config.rankings.default_limit
    if isinstance(limit, bool):
        raise InvalidRequestError("limit must be an integer")
    try:
        value = int(str(limit).strip())
    except ValueError as exc:
        raise InvalidRequestError("limit must be an integer") from exc
    if value < 1 or value > config.rankings.max_limit:
        raise InvalidRequestError(f"limit must be between 1 and {config.rankings.max_limit}")
    return value


def claimable_summary(conn: sqlite3.Connection | None, wallet: Any, config: AppConfig) -> dict[str, Any]:
    wallet_pubkey = validate_wallet(wallet)
    if conn is None:
        raise StoreUnavailableError("Database not available")

    rewards = fetch_wallet_rewards(conn, wallet_pubkey)
    claimability = compute_claimability(rewards, config.claims.threshold_lamports)
    available_lamports = claimability["available_lamports"]

    return {
        "ok": True,
        "wallet": wallet_pubkey,
        "pumpfun": {
            "available": available_lamports > 0,
            "pendingLamports": str(claimability["pending_lamports"]),
            "availableLamports": str(available_lamports),
            "thresholdLamports": str(claimability["threshold_lamports"]),
            "thresholdMet": claimability["threshold_met"],
            "pendingRewardCount": claimability["pending_reward_count"],
            "availableRewardCount": claimability["available_reward_count"],
            "availableEpochIds": claimability["available_epoch_ids"],
        },
        "totalClaimableLamports": str(available_lamports),
        "totalClaimableSol": lamports_to_sol(available_lamports),
    }


def holder_stats(conn: sqlite3.Connection | None, wallet: Any) -> dict[str, Any]:
    wallet_pubkey = validate_wallet(wallet)
    if conn is None:
        raise StoreUnavailableError("Database not available")
    stats = compute_holder_stats(conn, wallet_pubkey)
    return {
        "ok": True,
        "wallet": wallet_pubkey,
        "totalEarned": str(stats["total_earned"]),
        "totalClaimed": str(stats["total_claimed"]),
        "totalPending": str(stats["total_pending"]),
        "campaignsJoined": stats["campaigns_joined"],
        "totalEngagements": stats["total_engagements"],
        "averageScore": stats["average_score"],
    }


def rankings(
    conn: sqlite3.Connection | None,
    period: Any,
    limit: Any,
    config: AppConfig,
    now: int | None = None,
) -> dict[str, Any]:
    normalized = normalize_period(period)
    resolved_limit = validate_limit(limit, config)
    if conn is None:
        raise StoreUnavailableError("Database not available")

    entries = compute_rankings(
        conn,
        normalized,
        resolved_limit,
        now=now,
        trend_window_s=config.rankings.trend_window_s,
    )
    return {
        "ok": True,
        "period": normalized,
        "entries": [
            {
                "rank": entry["rank"],
                "tokenMint": entry["token_mint"],
                "campaignId": entry["campaign_id"],
                "name": entry["name"],
                "symbol": entry["symbol"],
                "imageUrl": entry["image_url"],
                "exposureScore": entry["exposure_score"],
                "uniqueEngagers": entry["unique_engagers"],
                "totalEarnedLamports": str(entry["total_earned_lamports"]),
                "trendPct": entry["trend_pct"],
            }
            for entry in entries
        ],
    }
