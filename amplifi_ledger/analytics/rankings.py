from __future__ import annotations

import logging
import sqlite3
from typing import Any

from amplifi_ledger.db.reward_source import detect_reward_source
from amplifi_ledger.scoring.features import compute_trend_pct, safe_number
from amplifi_ledger.scoring.weights import stable_sorted
from amplifi_ledger.utils.time import now_unix

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
TREND_WINDOW_SECONDS = 7 * DAY_SECONDS

_PERIOD_ALIASES = {
    "24h": "24h",
    "day": "24h",
    "7d": "7d",
    "week": "7d",
}
_PERIOD_WINDOWS = {
    "24h": DAY_SECONDS,
    "7d": 7 * DAY_SECONDS,
}


def normalize_period(period: Any) -> str:
    return _PERIOD_ALIASES.get(str(period if period is not None else "").strip().lower(), "all")


def period_window_seconds(period: Any) -> int | None:
    return _PERIOD_WINDOWS.get(normalize_period(period))


def compute_rankings(
    conn: sqlite3.Connection,
    period: str = "all",
    limit: int = 50,
    now: int | None = None,
    trend_window_s: int = TREND_WINDOW_SECONDS,
) -> list[dict[str, Any]]:
    """Rank token mints by summed exposure score of clean engagement.

    The trend always compares the latest ``trend_window_s`` against the one
    before it, whatever ``period`` is selected.
    """
    t = now if now is not None else now_unix()
    window_seconds = period_window_seconds(period)
    from_unix = t - window_seconds if window_seconds else None
    trend_cur_from = t - trend_window_s
    trend_prev_from = t - 2 * trend_window_s

    campaign_mints, latest_campaign = _load_campaigns(conn)

    totals: dict[str, dict[str, Any]] = {}
    trend_cur: dict[str, float] = {}
    trend_prev: dict[str, float] = {}

    # Windowed periods never need events older than both the period and the trend windows.
    params: list[Any] = []
    window_clause = ""
    if from_unix is not None:
        window_clause = "AND created_at_unix >= ?"
        params.append(min(from_unix, trend_prev_from))
    rows = conn.execute(
        f"""
        SELECT campaign_id, wallet_pubkey, final_score, created_at_unix
        FROM engagement_events
        WHERE is_duplicate = 0 AND is_spam = 0
          {window_clause}
        ORDER BY rowid
        """,
        params,
    ).fetchall()
    for row in rows:
        token_mint = campaign_mints.get(row["campaign_id"])
        if not token_mint:
            continue
        score = safe_number(row["final_score"])
        created_at = safe_number(row["created_at_unix"])

        if from_unix is None or created_at >= from_unix:
            state = totals.setdefault(token_mint, {"exposure_score": 0.0, "wallets": set()})
            state["exposure_score"] += score
            if row["wallet_pubkey"]:
                state["wallets"].add(row["wallet_pubkey"])

        if created_at >= trend_cur_from:
            trend_cur[token_mint] = trend_cur.get(token_mint, 0.0) + score
        elif created_at >= trend_prev_from:
            trend_prev[token_mint] = trend_prev.get(token_mint, 0.0) + score

    payouts = _load_payout_totals(conn, from_unix)
    profiles = _load_profiles(conn)

    entries: list[dict[str, Any]] = []
    for token_mint, state in totals.items():
        profile = profiles.get(token_mint, {})
        entries.append(
            {
                "token_mint": token_mint,
                "campaign_id": latest_campaign.get(token_mint),
                "name": profile.get("name"),
                "symbol": profile.get("symbol"),
                "image_url": profile.get("image_url"),
                "exposure_score": state["exposure_score"],
                "unique_engagers": len(state["wallets"]),
                "total_earned_lamports": payouts.get(token_mint, 0),
                "trend_pct": compute_trend_pct(trend_cur.get(token_mint, 0.0), trend_prev.get(token_mint, 0.0)),
            }
        )

    ranked = stable_sorted(entries, key=lambda item: item["exposure_score"], reverse=True)[: max(limit, 0)]
    for index, entry in enumerate(ranked, start=1):
        entry["rank"] = index
    return ranked


def _load_campaigns(conn: sqlite3.Connection) -> tuple[dict[str, str], dict[str, str]]:
    rows = conn.execute(
        """
        SELECT id, token_mint, created_at_unix
        FROM campaigns
        WHERE token_mint IS NOT NULL AND token_mint <> ''
        """
    ).fetchall()
    campaign_mints: dict[str, str] = {}
    latest: dict[str, tuple[float, str]] = {}
    for row in rows:
        campaign_mints[row["id"]] = row["token_mint"]
        created_at = safe_number(row["created_at_unix"])
        current = latest.get(row["token_mint"])
        if current is None or created_at > current[0]:
            latest[row["token_mint"]] = (created_at, row["id"])
    return campaign_mints, {mint: value[1] for mint, value in latest.items()}


def _load_payout_totals(conn: sqlite3.Connection, from_unix: int | None) -> dict[str, int]:
    try:
        payouts = detect_reward_source(conn).fetch_settled_payouts(conn, from_unix)
    except (sqlite3.Error, RuntimeError) as exc:
        logger.warning("Payout totals unavailable, reporting zero: %s", exc)
        return {}
    totals: dict[str, int] = {}
    for payout in payouts:
        mint = payout["token_mint"]
        totals[mint] = totals.get(mint, 0) + payout["reward_lamports"]
    return totals


def _load_profiles(conn: sqlite3.Connection) -> dict[str, dict[str, Any]]:
    try:
        rows = conn.execute("SELECT token_mint, name, symbol, image_url FROM project_profiles").fetchall()
    except sqlite3.Error as exc:
        logger.warning("Project profiles unavailable: %s", exc)
        return {}
    profiles: dict[str, dict[str, Any]] = {}
    for row in rows:
        profiles[row["token_mint"]] = {
            "name": row["name"],
            "symbol": row["symbol"],
            "image_url": row["image_url"],
        }
    return profiles
